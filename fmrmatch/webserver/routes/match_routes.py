"""
Matching Routes
Identify (1:N), verify (1:1) and decode operations.

Engine calls run in the ProcessPool set by server.py (or the default thread
executor when the pool is disabled) and are bounded by SEARCH_TIMEOUT.
Engine failures (bad probe, unusable gallery, ...) are returned as HTTP 200
with success=false, exactly as the engine reports them.
"""

import asyncio
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from fmrmatch.decoder import load_template
from fmrmatch.errors import FormatError
from fmrmatch.logger import log_error
from fmrmatch.serialization import template_to_dict
from fmrmatch.worker import worker_search, worker_verify
from ..config import MATCH_THRESHOLD, MAX_GALLERY_RECORDS, SEARCH_TIMEOUT


router = APIRouter(tags=["Matching"])


# Global reference to process pool (set by server.py)
process_pool = None


def set_globals(pool):
    """Set global process pool reference."""
    global process_pool
    process_pool = pool


class MatchRequest(BaseModel):
    """1:N identification request model."""
    probe: str
    gallery: List[Dict[str, Any]]
    threshold: Optional[int] = Field(None, ge=0, le=255)
    position_aware: bool = True
    template_field: Optional[str] = None
    key_field: Optional[str] = None


class VerifyRequest(BaseModel):
    """1:1 verification request model."""
    probe: str
    candidate: str
    threshold: Optional[int] = Field(None, ge=0, le=255)
    position_aware: bool = True


class DecodeRequest(BaseModel):
    """Template decode request model."""
    template: str
    include_minutiae: bool = False


def get_client_ip(request: Request) -> str:
    """
    Extract client IP address from request (handles proxies).

    Args:
        request: FastAPI request object

    Returns:
        Client IP address string
    """
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        return forwarded.split(',')[0].strip()

    real_ip = request.headers.get('X-Real-IP')
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


async def _run_engine(request: Request, context: str, func, *args) -> Dict[str, Any]:
    """Run an engine worker function off the event loop with a timeout."""
    loop = asyncio.get_event_loop()
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(process_pool, func, *args),
            timeout=SEARCH_TIMEOUT
        )
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=504,
            detail=f"{context} did not finish within {SEARCH_TIMEOUT}s"
        )
    except Exception as e:
        log_error(e, context=context, ip=get_client_ip(request))
        raise HTTPException(
            status_code=500,
            detail=f"{context} failed: {type(e).__name__}"
        )


@router.post("/match")
async def match(body: MatchRequest, request: Request):
    """
    1:N identification of a probe against the supplied gallery.

    Body:
        - probe: Base64 probe template
        - gallery: Records, each with an identity key and a base64 template
        - threshold, position_aware, template_field, key_field: optional overrides

    Returns:
        Match result (matched record included on a match)
    """
    options: Dict[str, Any] = {
        'threshold': MATCH_THRESHOLD if body.threshold is None else body.threshold,
        'position_aware': body.position_aware,
        'max_gallery_size': MAX_GALLERY_RECORDS,
    }
    if body.template_field:
        options['template_field'] = body.template_field
    if body.key_field:
        options['key_field'] = body.key_field

    return await _run_engine(request, "/api/match", worker_search, body.probe, body.gallery, options)


@router.post("/verify")
async def verify(body: VerifyRequest, request: Request):
    """
    1:1 verification of a probe against one enrolled template.

    Returns:
        Match result without record
    """
    options = {
        'threshold': MATCH_THRESHOLD if body.threshold is None else body.threshold,
        'position_aware': body.position_aware,
    }
    return await _run_engine(request, "/api/verify", worker_verify, body.probe, body.candidate, options)


@router.post("/decode")
async def decode(body: DecodeRequest):
    """
    Decode a base64 template and describe it.

    Returns:
        Header fields and per-view minutiae counts (full minutiae on request)

    Raises:
        422 when the template is not a valid record
    """
    try:
        template = load_template(body.template)
    except FormatError as e:
        raise HTTPException(
            status_code=422,
            detail={'error': str(e), 'error_type': type(e).__name__}
        )

    if body.include_minutiae:
        return template_to_dict(template)

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
                'minutiae_count': len(view.minutiae),
                'usable_minutiae': len(view.usable_minutiae),
            }
            for view in template.views
        ]
    }
