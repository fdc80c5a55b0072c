"""Console output formatting utilities for graphci."""

from __future__ import annotations

import json
import sys
import threading
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from graphci.executor import RunReport


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, stream=None, err_stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Output stream (defaults to sys.stdout at print time)
            err_stream: Error stream (defaults to sys.stderr at print time)
        """
        self.debug = debug
        self._stream = stream
        self._err_stream = err_stream
        # steps report from worker threads
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        if err:
            stream = self._err_stream or sys.stderr
        else:
            stream = self._stream or sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        job: str,
        refs: str,
        namespace: str,
        step_count: int,
        dry: bool = False,
    ) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED" + (" (dry run)" if dry else ""),
            f"Job: {job or '<unnamed>'}",
            f"Refs: {refs}",
            f"Namespace: {namespace}",
            f"Steps: {step_count}",
            "",
        )

    def print_step_start(self, name: str, description: str) -> None:
        """Print step start message."""
        self._out(f"STEP STARTED: {name} ({description})")

    def print_step_succeeded(self, name: str, duration: Optional[float] = None) -> None:
        """Print step success message."""
        if duration is None:
            self._out(f"STEP SUCCEEDED: {name}")
        else:
            self._out(f"STEP SUCCEEDED: {name} ({duration:.1f}s)")

    def print_step_skipped(self, name: str, reason: str) -> None:
        """Print step skipped message."""
        self._out(f"STEP SKIPPED: {name} ({reason})")

    def print_step_failed(self, name: str, reason: str) -> None:
        """
        Print failure message.

        Only the first line of the reason is shown unless debug is enabled.
        """
        lines = [f"STEP FAILED: {name}"]
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"Error: {error_line}")
        self._out(*lines)

    def print_build(self, build: Dict[str, Any]) -> None:
        """Print the build a dry run would have submitted."""
        self._out(json.dumps(build, indent=2, sort_keys=True))

    def print_plan(self, levels: List[List[str]], external: Dict[str, List[str]]) -> None:
        """Print the resolved stages and the artifacts expected to exist already."""
        for idx, level in enumerate(levels):
            self._out(f"=== Stage {idx + 1}: {', '.join(level)} ===")
        if external:
            self._out("", "External requirements:")
            for link, consumers in sorted(external.items()):
                self._out(f"  {link} (required by {', '.join(consumers)})")

    def print_results(self, report: "RunReport") -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS" + (" (dry run)" if report.dry else ""), "=" * 40]
        for name, result in report.results.items():
            line = f"  {name}: {result.status.value.upper()}"
            if result.status.value in ("failed", "not attempted"):
                line += f" ({result.reason.splitlines()[0] if result.reason else ''})"
            lines.append(line)
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", f"{message}"]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__, file=self._err_stream or sys.stderr)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
