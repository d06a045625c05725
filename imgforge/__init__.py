"""imgforge — kernel raw-binary extraction and FAT32 test image assembly."""

from .errors import (BuildError, ConfigError, EntryMissingWarning, ExtractionError,
                     FormatError, ImageCapacityError, ToolchainError)
from .fsimage import (BinaryEntry, FilesystemImage, FilesystemImageAssembler,
                      create_image, discover_entries, discover_external_test_binaries)
from .kernel import KernelArtifact, KernelImageBuilder, deploy
from .matrix import BuildMatrixResolver, BuildTarget

__version__ = "0.3.0"
