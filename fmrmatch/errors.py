"""Exception hierarchy for the fmrmatch engine.

FormatError and its subclasses describe a single unusable template. Gallery
search catches them per entry; they only surface to callers through a failure
MatchResult or when decode() is called directly.
"""


class MatchingError(Exception):
    """Base class for every error raised by the engine."""


class FormatError(MatchingError, ValueError):
    """The encoded template is not a usable finger minutiae record."""


class InvalidEncoding(FormatError):
    """Base64 text could not be decoded."""


class UnsupportedFormat(FormatError):
    """Unknown format identifier or record version."""


class LengthMismatch(FormatError):
    """Declared record length differs from the actual byte length."""

    def __init__(self, declared: int, actual: int) -> None:
        self.declared = declared
        self.actual = actual
        super().__init__(
            f"Record length mismatch: header declares {declared} bytes, got {actual}"
        )


class Truncated(FormatError):
    """The byte stream ended before all declared data was read."""


class InvalidRecord(FormatError):
    """A header field holds a value outside its allowed range."""


class ConfigurationError(MatchingError, ValueError):
    """Invalid matcher settings."""


class NoUsableTemplates(MatchingError):
    """No gallery entry could be decoded."""

    def __init__(self, message: str = "no usable templates") -> None:
        super().__init__(message)


class GalleryTooLarge(MatchingError):
    """The gallery exceeds the configured maximum size."""

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"Gallery has {size} entries, limit is {limit}")
