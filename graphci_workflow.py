# graphci_workflow.py
# Example pipeline: import a Go toolchain image, clone the job refs on top of
# it, build the binary image, build a release image from a Dockerfile the
# binary image carries, and run unit and smoke tests.
from __future__ import annotations

from graphci.dsl import image_build, input_image, project_image, resources, source, test, wf

RESOURCES = {
    "*": resources(requests={"cpu": "100m", "memory": "200Mi"}),
    "bin": resources(limits={"memory": "4Gi"}),
}


def workflow():
    return wf(
        # root: the toolchain every other image starts from
        input_image("docker.io/library/golang:1.22"),

        # src: the repository at the job refs
        source(),

        # bin: compiled from the repository checkout
        project_image("bin", from_="root", dockerfile_path="images/bin/Dockerfile"),

        # release: Dockerfile shipped inside the bin image
        image_build("release", "bin", dockerfile_path="/go/src/app/images/release/Dockerfile", from_="bin"),

        test("unit", "go test ./...", from_="src"),
        test(
            "smoke",
            'echo "testing $LOCAL_IMAGE_RELEASE" && ./hack/smoke.sh',
            from_="bin",
            parameters=["LOCAL_IMAGE_RELEASE"],
        ),
    )
