"""fmrmatch - ISO/IEC 19794-2 fingerprint template matching engine."""

__version__ = "1.0.0"

from fmrmatch.errors import (
    MatchingError, FormatError, InvalidEncoding, UnsupportedFormat, LengthMismatch,
    Truncated, InvalidRecord, ConfigurationError, NoUsableTemplates, GalleryTooLarge,
)
from fmrmatch.models import (
    Minutia, MinutiaKind, FingerView, TemplateHeader, DecodedTemplate,
    Alignment, MatchSettings, MatchResult,
)
from fmrmatch.decoder import decode, load_template, try_decode
from fmrmatch.serialization import encode_template, encode_base64, build_template
from fmrmatch.comparator import score
from fmrmatch.matching import match_templates
from fmrmatch.search import FingerprintMatcher, PreparedGallery, search, verify, find_match
from fmrmatch.logger import configure_logging

__all__ = [
    "__version__",
    "MatchingError", "FormatError", "InvalidEncoding", "UnsupportedFormat", "LengthMismatch",
    "Truncated", "InvalidRecord", "ConfigurationError", "NoUsableTemplates", "GalleryTooLarge",
    "Minutia", "MinutiaKind", "FingerView", "TemplateHeader", "DecodedTemplate",
    "Alignment", "MatchSettings", "MatchResult",
    "decode", "load_template", "try_decode",
    "encode_template", "encode_base64", "build_template",
    "score", "match_templates",
    "FingerprintMatcher", "PreparedGallery", "search", "verify", "find_match",
    "configure_logging",
]
