"""
HTTP client for the upstream REST API and part destinations.

The upstream API hands out one destination per part (a presigned URL plus
the headers it expects) and records finished segments. This module wraps
the three calls a proxied part upload needs:

1. GET the part descriptor
2. PUT the part bytes to the descriptor's URL
3. PATCH the completed segment back to the API

Each call raises UpstreamError on a non-2xx status or a transport failure.
Nothing is retried.
"""

import logging
import urllib.parse
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union

import httpx

from ...core.headers import get_header
from ...core.models import CompletionSegment, PartDescriptor
from ...core.options import SegmentPartField

logger = logging.getLogger(__name__)

FETCH_PART = "Failed to fetch part"
UPLOAD_PART = "Failed to upload part"
UPDATE_SEGMENTS = "Failed to update segments"
INVALID_DESCRIPTOR = "Invalid part descriptor"

PartBody = Union[bytes, AsyncIterator[bytes]]


class UpstreamError(Exception):
    """
    Raised when an upstream or destination call fails.

    status_code and reason are the upstream's own when it answered,
    or 502 when it could not be reached or answered nonsense.
    """

    def __init__(self, stage: str, status_code: int, reason: str) -> None:
        self.stage = stage
        self.status_code = status_code
        self.reason = reason
        super().__init__(self.message)

    @property
    def message(self) -> str:
        return f"{self.stage}: {self.reason}"


@dataclass
class UpstreamConfig:
    """Configuration for the upstream REST API."""
    base_url: str
    part_path: str = "/companies/{company_id}/projects/{project_id}/file_uploads/{upload_id}/parts/{part_number}"
    upload_path: str = "/companies/{company_id}/projects/{project_id}/file_uploads/{upload_id}"
    timeout_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ValueError("base_url is required")


def _quote(value: object) -> str:
    return urllib.parse.quote(str(value), safe="")


class UpstreamApiClient:
    """
    Talks to the upstream API and to the destinations it issues.

    A transport can be injected so tests run against httpx.MockTransport
    instead of the network.
    """

    def __init__(
        self,
        config: UpstreamConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._config.timeout_seconds,
            transport=self._transport,
        )

    def part_url(self, company_id: str, project_id: str, upload_id: str, part_number: int) -> str:
        path = self._config.part_path.format(
            company_id=_quote(company_id),
            project_id=_quote(project_id),
            upload_id=_quote(upload_id),
            part_number=part_number,
        )
        return self._config.base_url.rstrip("/") + path

    def upload_url(self, company_id: str, project_id: str, upload_id: str) -> str:
        path = self._config.upload_path.format(
            company_id=_quote(company_id),
            project_id=_quote(project_id),
            upload_id=_quote(upload_id),
        )
        return self._config.base_url.rstrip("/") + path

    async def _send(self, stage: str, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            logger.error(
                "Upstream request could not be sent",
                extra={"stage": stage, "method": method, "url": url, "error": str(e)}
            )
            raise UpstreamError(stage, 502, str(e) or type(e).__name__)

        if not response.is_success:
            logger.warning(
                "Upstream request failed",
                extra={
                    "stage": stage,
                    "method": method,
                    "url": url,
                    "status": response.status_code,
                    "reason": response.reason_phrase,
                }
            )
            raise UpstreamError(stage, response.status_code, response.reason_phrase)

        return response

    async def fetch_part_descriptor(
        self,
        company_id: str,
        project_id: str,
        upload_id: str,
        part_number: int,
        auth_headers: dict[str, str],
    ) -> PartDescriptor:
        """GET the destination for one part."""
        url = self.part_url(company_id, project_id, upload_id, part_number)
        logger.debug("Fetching part descriptor", extra={"url": url})

        response = await self._send(FETCH_PART, "GET", url, headers=auth_headers)

        try:
            descriptor = PartDescriptor.from_payload(response.json())
        except ValueError as e:
            logger.error(
                "Upstream returned an unusable part descriptor",
                extra={"url": url, "error": str(e)}
            )
            raise UpstreamError(INVALID_DESCRIPTOR, 502, str(e))

        logger.debug(
            "Received part descriptor",
            extra={"part_id": descriptor.id, "header_names": sorted(descriptor.headers)}
        )
        return descriptor

    async def upload_part(
        self,
        url: str,
        headers: dict[str, str],
        body: PartBody,
    ) -> Optional[str]:
        """
        PUT part bytes to a destination.

        Returns the ETag the destination reported, or None if it sent none.
        """
        logger.debug("Uploading part to destination", extra={"url": url.split("?", 1)[0]})

        response = await self._send(UPLOAD_PART, "PUT", url, headers=headers, content=body)

        return get_header(response.headers, "etag")

    async def complete_segments(
        self,
        company_id: str,
        project_id: str,
        upload_id: str,
        segments: list[CompletionSegment],
        part_field: SegmentPartField,
        auth_headers: dict[str, str],
    ) -> None:
        """PATCH finished segments onto the upstream upload record."""
        url = self.upload_url(company_id, project_id, upload_id)
        payload = {"segments": [segment.to_payload(part_field) for segment in segments]}
        logger.debug("Updating segments", extra={"url": url, "segments": payload["segments"]})

        await self._send(UPDATE_SEGMENTS, "PATCH", url, headers=auth_headers, json=payload)
