"""Template decoder for fmrmatch

Parses ISO/IEC 19794-2:2005 finger minutiae records into DecodedTemplate objects.

Record layout (big-endian):
- 24-byte header: "FMR\\0", " 20\\0", record length (4), capture device (2),
  image width (2), image height (2), x/y resolution (2 + 2), view count (1), reserved (1)
- per view: position (1), view number | impression type (1), finger quality (1),
  minutiae count (1), minutiae (6 bytes each), extended data length (2) + data

The input is untrusted. Every read is bounds-checked against the actual buffer,
and the declared record length is compared with the real length before any view
is parsed, so nothing is ever sized from a header field.
"""

from __future__ import annotations
import base64
import binascii
import struct
from typing import List, Optional, Tuple, Union

from fmrmatch.config import (
    FORMAT_IDENTIFIER, SUPPORTED_VERSIONS, HEADER_SIZE, VIEW_HEADER_SIZE,
    MINUTIA_RECORD_SIZE, EXTENDED_LENGTH_SIZE, MAX_VIEWS, COORDINATE_MASK,
)
from fmrmatch.errors import (
    FormatError, InvalidEncoding, UnsupportedFormat, LengthMismatch, Truncated, InvalidRecord,
)
from fmrmatch.logger import get_logger
from fmrmatch.models import Minutia, MinutiaKind, FingerView, TemplateHeader, DecodedTemplate

logger = get_logger("decoder")

EncodedTemplate = Union[str, bytes, bytearray, memoryview, DecodedTemplate]

_HEADER = struct.Struct(">4s4sIHHHHHBB")
_VIEW_HEADER = struct.Struct(">BBBB")
_MINUTIA = struct.Struct(">HHBB")
_EXTENDED_LENGTH = struct.Struct(">H")


def decode_base64(text: Union[str, bytes]) -> bytes:
    """Decode base64 text, discarding characters outside the base64 alphabet.

    Raises:
        InvalidEncoding: If the text is not valid base64
    """
    try:
        return base64.b64decode(text, validate=False)
    except (binascii.Error, ValueError) as e:
        raise InvalidEncoding(f"Template is not valid base64: {e}") from e


def to_bytes(data: Union[str, bytes, bytearray, memoryview]) -> bytes:
    """Normalise an encoded template to raw record bytes.

    Strings are base64 text; bytes-like objects are taken as the binary record.
    """
    if isinstance(data, str):
        return decode_base64(data)
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise InvalidEncoding(f"Unsupported template type: {type(data).__name__}")


def load_template(data: EncodedTemplate) -> DecodedTemplate:
    """Decode any accepted template form; decoded templates pass through unchanged."""
    if isinstance(data, DecodedTemplate):
        return data
    return decode(to_bytes(data))


def _parse_header(data: bytes) -> TemplateHeader:
    actual = len(data)

    if actual >= len(FORMAT_IDENTIFIER) and data[:len(FORMAT_IDENTIFIER)] != FORMAT_IDENTIFIER:
        raise UnsupportedFormat(f"Unknown format identifier {data[:len(FORMAT_IDENTIFIER)]!r}")

    if actual < HEADER_SIZE:
        raise Truncated(f"Record has {actual} bytes, header needs {HEADER_SIZE}")

    (_, version, record_length, device_id, width, height,
     x_resolution, y_resolution, view_count, _) = _HEADER.unpack_from(data, 0)

    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedFormat(f"Unsupported record version {version!r}")

    if record_length != actual:
        raise LengthMismatch(record_length, actual)

    if view_count == 0 or view_count > MAX_VIEWS:
        raise InvalidRecord(f"View count must be in [1, {MAX_VIEWS}], got {view_count}")

    return TemplateHeader(
        version=version.strip(b"\x00 ").decode("ascii"),
        record_length=record_length,
        device_id=device_id,
        width=width,
        height=height,
        x_resolution=x_resolution,
        y_resolution=y_resolution,
        view_count=view_count,
    )


def _parse_minutia(data: bytes, offset: int, width: int, height: int) -> Minutia:
    type_x, reserved_y, angle, quality = _MINUTIA.unpack_from(data, offset)
    x = type_x & COORDINATE_MASK
    y = reserved_y & COORDINATE_MASK

    # Real sensors occasionally report coordinates slightly outside the image;
    # keep them but leave them out of scoring.
    in_bounds = (width == 0 or x < width) and (height == 0 or y < height)

    return Minutia(
        x=x,
        y=y,
        angle=angle,
        kind=MinutiaKind.from_code(type_x >> 14),
        quality=quality,
        in_bounds=in_bounds,
    )


def _parse_view(data: bytes, offset: int, header: TemplateHeader, index: int) -> Tuple[FingerView, int]:
    end = len(data)

    if offset + VIEW_HEADER_SIZE > end:
        raise Truncated(f"View {index}: header ends past the record")

    position, view_impression, quality, count = _VIEW_HEADER.unpack_from(data, offset)
    offset += VIEW_HEADER_SIZE

    needed = count * MINUTIA_RECORD_SIZE
    if offset + needed > end:
        raise Truncated(
            f"View {index}: {count} minutiae need {needed} bytes, {end - offset} available"
        )

    minutiae: List[Minutia] = []
    for _ in range(count):
        minutiae.append(_parse_minutia(data, offset, header.width, header.height))
        offset += MINUTIA_RECORD_SIZE

    if offset + EXTENDED_LENGTH_SIZE > end:
        raise Truncated(f"View {index}: missing extended data length")
    (extended_length,) = _EXTENDED_LENGTH.unpack_from(data, offset)
    offset += EXTENDED_LENGTH_SIZE

    if offset + extended_length > end:
        raise Truncated(f"View {index}: extended data of {extended_length} bytes ends past the record")
    offset += extended_length

    out_of_bounds = sum(1 for m in minutiae if not m.in_bounds)
    if out_of_bounds:
        logger.debug(
            f"View {index}: {out_of_bounds}/{count} minutiae outside "
            f"{header.width}x{header.height}, excluded from scoring"
        )

    view = FingerView(
        finger_position=position,
        view_number=view_impression >> 4,
        impression_type=view_impression & 0x0F,
        finger_quality=quality,
        minutiae=tuple(minutiae),
    )
    return view, offset


def decode(data: Union[bytes, bytearray, memoryview]) -> DecodedTemplate:
    """Decode a binary finger minutiae record.

    Args:
        data: Raw record bytes

    Returns:
        DecodedTemplate with one FingerView per declared view

    Raises:
        UnsupportedFormat: Unknown format identifier or version
        LengthMismatch: Declared record length differs from len(data)
        Truncated: Data ends before all declared content
        InvalidRecord: View count outside [1, MAX_VIEWS]
        InvalidEncoding: If data is not bytes-like
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise InvalidEncoding(f"Unsupported template type: {type(data).__name__}")
    data = bytes(data)

    if not data:
        raise Truncated("Empty template")

    header = _parse_header(data)

    views: List[FingerView] = []
    offset = HEADER_SIZE
    for index in range(header.view_count):
        view, offset = _parse_view(data, offset, header, index)
        views.append(view)

    if offset < len(data):
        logger.debug(f"Ignoring {len(data) - offset} trailing bytes after the last view")

    return DecodedTemplate(header=header, views=tuple(views))


def try_decode(data: EncodedTemplate) -> Tuple[Optional[DecodedTemplate], Optional[FormatError]]:
    """Decode without raising; returns (template, None) or (None, error)."""
    try:
        return load_template(data), None
    except FormatError as e:
        return None, e
