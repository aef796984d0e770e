"""
Upload proxy handler.

Turns one inbound HTTP request into either a direct storage operation
(create / uploadPart / complete / abort / get / delete on a multipart
upload) or a proxied part upload, and wraps whatever comes back in CORS
headers.

A proxied part upload is a strictly sequential chain:
1. GET the part descriptor from the upstream API
2. PUT the request body to the descriptor's destination
3. PATCH the resulting ETag back to the upstream API as a segment

Each step needs the previous step's output, so the first failure ends the
request and its status is returned as-is. Nothing is retried.
"""

import json
import logging
from typing import AsyncIterator, Optional, Union

from fastapi import Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse

from ..core.actions import (
    Action,
    InvalidRequest,
    RoutingError,
    parse_part_number,
    parse_proxy_path,
    resolve_action,
)
from ..core.headers import cors_headers, has_header, transform_headers
from ..core.models import CompletionSegment, ForwardedAuth, ProxyPartResult, UploadedPart
from ..core.options import AuthMode, IdExtraction, RouterOptions
from ..infrastructure.storage.client import StorageClient, StorageError
from ..infrastructure.upstream.client import UpstreamApiClient, UpstreamError

logger = logging.getLogger(__name__)


class UploadProxyHandler:
    """
    Stateless request handler.

    Holds only its options and clients; every request is handled on its own.
    """

    def __init__(
        self,
        options: RouterOptions,
        storage: StorageClient,
        upstream: UpstreamApiClient,
    ) -> None:
        self._options = options
        self._storage = storage
        self._upstream = upstream

    async def handle(self, request: Request) -> Response:
        """Handle one request. Every response, including errors, carries CORS headers."""
        try:
            response = await self._dispatch(request)
        except RoutingError as e:
            logger.info(
                "Rejected request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": e.status_code,
                    "reason": e.message,
                }
            )
            response = PlainTextResponse(e.message, status_code=e.status_code, headers=e.headers)
        except StorageError as e:
            response = PlainTextResponse(str(e), status_code=400)
        except UpstreamError as e:
            response = PlainTextResponse(e.message, status_code=e.status_code)

        return self.apply_cors(response)

    def apply_cors(self, response: Response, preflight: bool = False) -> Response:
        for name, value in cors_headers(self._options, preflight=preflight).items():
            response.headers[name] = value
        return response

    async def _dispatch(self, request: Request) -> Response:
        method = request.method.upper()
        if method == "OPTIONS":
            return self.apply_cors(Response(status_code=204), preflight=True)

        path = request.url.path
        params = request.query_params

        if self._options.id_extraction is IdExtraction.PATH and method == "PUT":
            proxy_path = parse_proxy_path(path)
            if proxy_path is not None:
                return await self._proxy_part_upload(
                    request,
                    company_id=proxy_path.company_id,
                    project_id=proxy_path.project_id,
                    upload_id=proxy_path.upload_id,
                    part_number_raw=proxy_path.part_number,
                )

        action = resolve_action(method, params.get("action"))
        logger.debug("Resolved action", extra={"action": action.value, "path": path})

        if action is Action.PROXY_PUT:
            return await self._proxy_part_upload(
                request,
                company_id=self._options.company_id,
                project_id=self._options.project_id,
                upload_id=params.get("uploadId"),
                part_number_raw=params.get("partNumber"),
            )

        key = path[1:]
        if not key:
            raise InvalidRequest("Missing object key")

        if action is Action.MPU_CREATE:
            return await self._create(key)
        if action is Action.MPU_COMPLETE:
            return await self._complete(request, key, params.get("uploadId"))
        if action is Action.MPU_UPLOAD_PART:
            return await self._upload_part(
                request, key, params.get("uploadId"), params.get("partNumber")
            )
        if action is Action.GET:
            return await self._get(key)
        if action is Action.MPU_ABORT:
            return await self._abort(key, params.get("uploadId"))
        return await self._delete(key)

    # -----------------------------------------------------------------------
    # Direct storage actions
    # -----------------------------------------------------------------------

    async def _create(self, key: str) -> Response:
        target = await self._storage.create_multipart_upload(key)
        return JSONResponse(target.to_dict())

    async def _upload_part(
        self,
        request: Request,
        key: str,
        upload_id: Optional[str],
        part_number_raw: Optional[str],
    ) -> Response:
        if upload_id is None or part_number_raw is None:
            raise InvalidRequest("Missing partNumber or uploadId")
        part_number = parse_part_number(part_number_raw)

        body = await request.body()
        if not body:
            raise InvalidRequest("Missing request body")

        multipart_upload = self._storage.resume_multipart_upload(key, upload_id)
        uploaded_part = await multipart_upload.upload_part(part_number, body)
        return JSONResponse(uploaded_part.to_dict())

    async def _complete(self, request: Request, key: str, upload_id: Optional[str]) -> Response:
        if upload_id is None:
            raise InvalidRequest("Missing uploadId")

        multipart_upload = self._storage.resume_multipart_upload(key, upload_id)

        try:
            payload = json.loads(await request.body())
            raw_parts = payload["parts"]
            if not isinstance(raw_parts, list):
                raise ValueError("parts must be a list")
            parts = [UploadedPart.from_dict(part) for part in raw_parts]
        except (ValueError, KeyError, TypeError):
            raise InvalidRequest("Missing or incomplete body")

        completed = await multipart_upload.complete(parts)
        return Response(status_code=200, headers={"etag": completed.http_etag})

    async def _abort(self, key: str, upload_id: Optional[str]) -> Response:
        if upload_id is None:
            raise InvalidRequest("Missing uploadId")

        multipart_upload = self._storage.resume_multipart_upload(key, upload_id)
        await multipart_upload.abort()
        return Response(status_code=204)

    async def _delete(self, key: str) -> Response:
        await self._storage.delete_object(key)
        return Response(status_code=204)

    async def _get(self, key: str) -> Response:
        stored = await self._storage.get_object(key)
        if stored is None:
            return PlainTextResponse("Object Not Found", status_code=404)

        headers = dict(stored.http_metadata)
        headers["etag"] = stored.http_etag

        if isinstance(stored.body, bytes):
            return Response(content=stored.body, headers=headers)
        if stored.size is not None:
            headers["content-length"] = str(stored.size)
        return StreamingResponse(stored.body, headers=headers)

    # -----------------------------------------------------------------------
    # Proxied part upload
    # -----------------------------------------------------------------------

    def _forwarded_auth(self, request: Request) -> ForwardedAuth:
        user_id = request.headers.get(self._options.user_id_header) or self._options.default_user_id
        cookie = None
        if self._options.auth_mode is AuthMode.COOKIE:
            cookie = request.headers.get("cookie")
        return ForwardedAuth(user_id=user_id, cookie=cookie)

    async def _read_part_body(self, request: Request) -> Union[bytes, AsyncIterator[bytes]]:
        """
        Return the request body, buffered or as a stream.

        When streaming, the first non-empty chunk is read up front so an
        empty body is rejected before any upstream call is made.
        """
        if not self._options.stream_part_body:
            body = await request.body()
            if not body:
                raise InvalidRequest("Missing request body")
            return body

        chunks = request.stream()
        first = b""
        async for chunk in chunks:
            if chunk:
                first = chunk
                break
        if not first:
            raise InvalidRequest("Missing request body")

        async def body_stream() -> AsyncIterator[bytes]:
            yield first
            async for chunk in chunks:
                if chunk:
                    yield chunk

        return body_stream()

    async def _proxy_part_upload(
        self,
        request: Request,
        company_id: str,
        project_id: str,
        upload_id: Optional[str],
        part_number_raw: Optional[str],
    ) -> Response:
        if upload_id is None or part_number_raw is None:
            raise InvalidRequest("Missing partNumber or uploadId")
        part_number = parse_part_number(part_number_raw)
        body = await self._read_part_body(request)

        auth_headers = self._forwarded_auth(request).to_headers(self._options.user_id_header)

        logger.info(
            "Proxying part upload",
            extra={
                "company_id": company_id,
                "project_id": project_id,
                "upload_id": upload_id,
                "part_number": part_number,
            }
        )

        # Step 1: where does this part go?
        descriptor = await self._upstream.fetch_part_descriptor(
            company_id, project_id, upload_id, part_number, auth_headers
        )

        # Step 2: send the bytes there. Auth is not forwarded to the destination.
        destination_headers = transform_headers(
            descriptor.headers, deny=self._options.stripped_headers
        )
        content_length = request.headers.get("content-length")
        if (
            not isinstance(body, bytes)
            and content_length
            and not has_header(destination_headers, "content-length")
        ):
            destination_headers["Content-Length"] = content_length

        etag = await self._upstream.upload_part(descriptor.url, destination_headers, body)
        if not etag:
            logger.error(
                "Destination accepted part without an ETag",
                extra={"upload_id": upload_id, "part_number": part_number}
            )
            return PlainTextResponse("Destination response missing ETag", status_code=502)

        # Step 3: record the segment upstream
        segment = CompletionSegment(etag=etag, part_number=part_number, part_id=descriptor.id)
        await self._upstream.complete_segments(
            company_id,
            project_id,
            upload_id,
            [segment],
            self._options.segment_part_field,
            auth_headers,
        )

        logger.info(
            "Proxied part upload complete",
            extra={"upload_id": upload_id, "part_number": part_number, "etag": etag}
        )
        result = ProxyPartResult(id=descriptor.id, part_number=part_number, etag=etag)
        return JSONResponse(result.to_dict())
