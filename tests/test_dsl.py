from __future__ import annotations

import pytest

from graphci.dsl import image_build, input_image, project_image, source, test as container_test
from graphci.model import ImageSourcePath


@pytest.mark.parametrize(
    "image, expected",
    [
        ("docker.io/library/golang:1.22", ("docker.io/library", "golang", "1.22")),
        ("ci/base:latest", ("ci", "base", "latest")),
        ("golang", ("", "golang", "latest")),
        ("localhost:5000/tools/go", ("localhost:5000/tools", "go", "latest")),
    ],
)
def test_input_image_parsing(image, expected):
    config = input_image(image)
    assert (config.namespace, config.name, config.tag) == expected
    assert config.to == "root"


def test_project_image_paths():
    config = project_image("bin", inputs={"tools": ["/usr/bin/jq", ("/opt/lib", "lib"), "/etc/conf:conf"]})
    assert config.inputs["tools"].paths == [
        ImageSourcePath("/usr/bin/jq", "."),
        ImageSourcePath("/opt/lib", "lib"),
        ImageSourcePath("/etc/conf", "conf"),
    ]
    with pytest.raises(ValueError):
        project_image("")


def test_defaults():
    assert (source().from_, source().to) == ("root", "src")
    assert image_build("release", "bin").dockerfile_path == "Dockerfile"
    config = container_test("unit", "make", env={"N": 1})
    assert config.from_ == "src"
    assert config.env == {"N": "1"}
