# parameters.py
from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Dict, Iterable, List

from .errors import DuplicateParameterError, ParameterLookupError

if TYPE_CHECKING:
    from .step import Step


class Parameters:
    """
    Run-scoped registry of parameters published by finished steps.

    Each name is written exactly once, by the scheduler thread, before any
    consumer of the publishing step is submitted. Workers only read. Values
    are looked up lazily on every get(), so unread parameters cost nothing.
    """

    def __init__(self) -> None:
        self._accessors: Dict[str, Callable[[], str]] = {}
        self._providers: Dict[str, str] = {}

    def publish(self, step: str, params: Dict[str, Callable[[], str]]) -> None:
        for name in params:
            if name in self._accessors:
                raise DuplicateParameterError(name, [self._providers[name], step])
        for name, accessor in params.items():
            self._accessors[name] = accessor
            self._providers[name] = step

    def has(self, name: str) -> bool:
        return name in self._accessors

    def names(self) -> List[str]:
        return sorted(self._accessors)

    def provider(self, name: str) -> str:
        return self._providers[name]

    def get(self, name: str) -> str:
        accessor = self._accessors.get(name)
        if accessor is None:
            raise ParameterLookupError(name, f"parameter {name} has not been published by any finished step")
        return accessor()

    def environment(self, names: Iterable[str]) -> Dict[str, str]:
        return {name: self.get(name) for name in names}


def check_parameters(steps: Iterable["Step"], dry: bool = False) -> Dict[str, str]:
    """
    Verify statically that no two steps provide the same parameter name.
    Only the names are read; no accessor is called.

    Returns:
        parameter name -> providing step name
    """
    owners: Dict[str, str] = {}
    for step in steps:
        params, _link = step.provides(dry)
        for name in params:
            if name in owners:
                raise DuplicateParameterError(name, [owners[name], step.name()])
            owners[name] = step.name()
    return owners
