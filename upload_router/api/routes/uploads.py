"""
Catch-all upload route.

Every path that is not an operational route belongs to the upload handler:
the path is the object key (or, in path mode, the proxy identifiers) and
the action comes from the query string. All methods are accepted here so
the handler can answer unsupported ones with 405 and an Allow header.
"""

from fastapi import APIRouter, Request
from fastapi.responses import Response

from ..dependencies import UploadHandlerDep

router = APIRouter()

ROUTED_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"]


@router.api_route("/{path:path}", methods=ROUTED_METHODS, include_in_schema=False)
async def route_upload(request: Request, handler: UploadHandlerDep) -> Response:
    return await handler.handle(request)
