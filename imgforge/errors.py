# imgforge/errors.py — failure taxonomy for the image pipeline
#
# Everything fatal derives from BuildError and aborts the run. Missing
# artifacts are EntryMissingWarning records: collected, summarised, never
# raised.

from pathlib import Path


class BuildError(Exception):
    """Fatal pipeline failure, tagged with the failing step and target."""

    def __init__(self, message: str, step: str | None = None, target=None):
        super().__init__(message)
        self.message = message
        self.step = step
        self.target = target

    def __str__(self):
        where = self.step or ""
        if self.target is not None:
            where = f"{where} ({self.target})" if where else f"({self.target})"
        return f"{where}: {self.message}" if where else self.message


class ConfigError(BuildError):
    pass


class ToolchainError(BuildError):
    pass


class ExtractionError(BuildError):
    pass


class ImageCapacityError(BuildError):
    pass


class FormatError(ImageCapacityError):
    pass


class EntryMissingWarning(UserWarning):
    def __init__(self, source: Path, dest: str | None = None, reason: str = "not found"):
        super().__init__(f"{source}: {reason}")
        self.source = Path(source)
        self.dest = dest
        self.reason = reason

    def __eq__(self, other):
        if not isinstance(other, EntryMissingWarning):
            return NotImplemented
        return (self.source, self.dest, self.reason) == (other.source, other.dest, other.reason)

    def __hash__(self):
        return hash((self.source, self.dest, self.reason))
