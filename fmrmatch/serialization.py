"""Serialization for DecodedTemplate (binary record, dict and JSON forms)

This module is the inverse of the decoder:
- encode_template / encode_base64: write an ISO/IEC 19794-2:2005 record
- template_to_dict / template_from_dict: plain dict form (returned by the HTTP decode endpoint)
- template_to_json / template_from_json: JSON text form (written by `decode --json`, read back by the CLI)
- build_template: assemble a single-view template from minutiae
"""

from __future__ import annotations
import base64
import json
import struct
from typing import Any, Dict, Iterable, Sequence

from fmrmatch.config import (
    FORMAT_IDENTIFIER, SUPPORTED_VERSIONS, HEADER_SIZE, VIEW_HEADER_SIZE,
    MINUTIA_RECORD_SIZE, EXTENDED_LENGTH_SIZE, MAX_VIEWS, COORDINATE_MASK,
)
from fmrmatch.errors import InvalidEncoding
from fmrmatch.models import Minutia, MinutiaKind, FingerView, TemplateHeader, DecodedTemplate


def _record_length(views: Sequence[FingerView]) -> int:
    return HEADER_SIZE + sum(
        VIEW_HEADER_SIZE + len(view.minutiae) * MINUTIA_RECORD_SIZE + EXTENDED_LENGTH_SIZE
        for view in views
    )


def encode_template(template: DecodedTemplate) -> bytes:
    """Write a template as a binary record.

    The record length and view count are computed from the views; the values
    stored in template.header for them are ignored.

    Args:
        template: Template to encode

    Returns:
        Record bytes

    Raises:
        ValueError: If a field does not fit its binary width
    """
    views = template.views
    if not 1 <= len(views) <= MAX_VIEWS:
        raise ValueError(f"Template must have 1..{MAX_VIEWS} views, got {len(views)}")

    header = template.header
    parts = [struct.pack(
        ">4s4sIHHHHHBB",
        FORMAT_IDENTIFIER,
        SUPPORTED_VERSIONS[0],
        _record_length(views),
        header.device_id,
        header.width,
        header.height,
        header.x_resolution,
        header.y_resolution,
        len(views),
        0,
    )]

    for view in views:
        if len(view.minutiae) > 255:
            raise ValueError(f"A view holds at most 255 minutiae, got {len(view.minutiae)}")
        parts.append(struct.pack(
            ">BBBB",
            view.finger_position,
            ((view.view_number & 0x0F) << 4) | (view.impression_type & 0x0F),
            view.finger_quality,
            len(view.minutiae),
        ))
        for m in view.minutiae:
            if not (0 <= m.x <= COORDINATE_MASK and 0 <= m.y <= COORDINATE_MASK):
                raise ValueError(f"Minutia position ({m.x}, {m.y}) does not fit 14 bits")
            parts.append(struct.pack(
                ">HHBB",
                (int(m.kind) << 14) | m.x,
                m.y,
                m.angle % 256,
                m.quality,
            ))
        parts.append(struct.pack(">H", 0))

    return b"".join(parts)


def encode_base64(template: DecodedTemplate) -> str:
    """Encode a template as base64 text."""
    return base64.b64encode(encode_template(template)).decode("ascii")


def build_template(
    minutiae: Iterable[Minutia],
    width: int = 256,
    height: int = 360,
    resolution: int = 197,
    finger_position: int = 0,
    finger_quality: int = 100,
    device_id: int = 0,
) -> DecodedTemplate:
    """Assemble a single-view template.

    Args:
        minutiae: Minutiae of the view
        width: Image width in pixels
        height: Image height in pixels
        resolution: Horizontal and vertical resolution
        finger_position: Finger position code (0 = unknown)
        finger_quality: Finger quality [0, 100]
        device_id: Capture device identifier

    Returns:
        DecodedTemplate (header length field matches encode_template output)
    """
    view = FingerView(
        finger_position=finger_position,
        view_number=0,
        impression_type=0,
        finger_quality=finger_quality,
        minutiae=tuple(minutiae),
    )
    header = TemplateHeader(
        version="20",
        record_length=_record_length([view]),
        device_id=device_id,
        width=width,
        height=height,
        x_resolution=resolution,
        y_resolution=resolution,
        view_count=1,
    )
    return DecodedTemplate(header=header, views=(view,))


def template_to_dict(template: DecodedTemplate) -> Dict[str, Any]:
    """Serialize template to a plain dictionary.

    Args:
        template: DecodedTemplate object

    Returns:
        Dictionary with header fields and one entry per view
    """
    header = template.header
    return {
        'version': header.version,
        'record_length': header.record_length,
        'device_id': header.device_id,
        'width': header.width,
        'height': header.height,
        'x_resolution': header.x_resolution,
        'y_resolution': header.y_resolution,
        'view_count': header.view_count,
        'views': [
            {
                'finger_position': view.finger_position,
                'view_number': view.view_number,
                'impression_type': view.impression_type,
                'finger_quality': view.finger_quality,
                'minutiae': [
                    {
                        'x': m.x,
                        'y': m.y,
                        'angle': m.angle,
                        'kind': m.kind.name.lower(),
                        'quality': m.quality,
                        'in_bounds': m.in_bounds
                    }
                    for m in view.minutiae
                ]
            }
            for view in template.views
        ]
    }


def template_from_dict(data: Dict[str, Any]) -> DecodedTemplate:
    """Deserialize template from dictionary.

    Args:
        data: Dictionary produced by template_to_dict

    Returns:
        DecodedTemplate object
    """
    views = tuple(
        FingerView(
            finger_position=v['finger_position'],
            view_number=v.get('view_number', 0),
            impression_type=v.get('impression_type', 0),
            finger_quality=v.get('finger_quality', 0),
            minutiae=tuple(
                Minutia(
                    x=m['x'],
                    y=m['y'],
                    angle=m['angle'],
                    kind=MinutiaKind[m.get('kind', 'other').upper()],
                    quality=m.get('quality', 0),
                    in_bounds=m.get('in_bounds', True)
                )
                for m in v.get('minutiae', [])
            )
        )
        for v in data['views']
    )
    header = TemplateHeader(
        version=data.get('version', '20'),
        record_length=data.get('record_length', _record_length(views)),
        device_id=data.get('device_id', 0),
        width=data['width'],
        height=data['height'],
        x_resolution=data.get('x_resolution', 0),
        y_resolution=data.get('y_resolution', 0),
        view_count=len(views)
    )
    return DecodedTemplate(header=header, views=views)


def template_to_json(template: DecodedTemplate) -> str:
    """Serialize template to JSON string.

    Args:
        template: DecodedTemplate object

    Returns:
        JSON string
    """
    return json.dumps(template_to_dict(template), indent=2)


def template_from_json(json_str: str) -> DecodedTemplate:
    """Deserialize template from JSON string.

    Args:
        json_str: JSON string with template data

    Returns:
        DecodedTemplate object

    Raises:
        InvalidEncoding: If the text is not a valid template document
    """
    try:
        return template_from_dict(json.loads(json_str))
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise InvalidEncoding(f"Template JSON is not valid: {type(e).__name__}: {e}") from e
