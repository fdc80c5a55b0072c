from .image_build import ImageBuildStep
from .input_image_tag import InputImageTagStep
from .project_image import ProjectDirectoryImageBuildStep
from .source import SourceStep
from .test import TestStep

__all__ = [
    "ImageBuildStep",
    "InputImageTagStep",
    "ProjectDirectoryImageBuildStep",
    "SourceStep",
    "TestStep",
]
