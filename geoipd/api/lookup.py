"""
Address lookup endpoint

POST / with {"ip": "..."}; every response uses the {"status", "data"} envelope.
"""

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from ..config import MAX_BODY_BYTES
from ..errors import InvalidAddressError, LookupFailure
from ..schemas.lookup import STATUS_ERROR, STATUS_OK, Envelope, LookupData, LookupRequest
from ..validation import normalize_address

router = APIRouter(tags=["lookup"])
logger = logging.getLogger("geoipd.http")


def write_response(http_status: int, status: str, data: Any) -> JSONResponse:
    return JSONResponse(status_code=http_status,
                        content=Envelope(status=status, data=data).model_dump(mode="json"))


async def _read_body(request: Request, limit: int) -> Optional[bytes]:
    """Read the request body, or None once it grows past limit bytes"""
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            return None
    return bytes(body)


@router.post("/")
async def lookup(request: Request):
    body = await _read_body(request, MAX_BODY_BYTES)
    if body is None:
        return write_response(400, STATUS_ERROR, "request body too large")

    try:
        payload = LookupRequest.model_validate(json.loads(body))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return write_response(400, STATUS_ERROR, "invalid JSON body")
    except ValidationError:
        return write_response(400, STATUS_ERROR, "body must be an object with a string \"ip\" field")

    try:
        ip = normalize_address(payload.ip)
    except InvalidAddressError as e:
        return write_response(400, STATUS_ERROR, str(e))

    manager = request.app.state.manager
    try:
        record = await run_in_threadpool(manager.lookup, ip)
    except LookupFailure as e:
        logger.error("lookup failed: %s", e, extra={"component": "http", "event": "lookup_failed",
                                                    "error_type": type(e).__name__})
        return write_response(500, STATUS_ERROR, str(e))

    data = LookupData(
        ip=str(ip),
        country=record.country_code,
        city=record.city.name if record.city else None,
        location=record.location,
    )
    return write_response(200, STATUS_OK, data.model_dump(mode="json"))


@router.api_route("/", methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def method_not_allowed():
    return write_response(405, STATUS_ERROR, "method not allowed")
