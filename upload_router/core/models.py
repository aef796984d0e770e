"""
Value objects for multipart and proxied part uploads.

None of these outlive a request. They are parsed from inbound requests or
upstream responses, handed to the next call, and dropped.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Union

from .options import SegmentPartField


@dataclass(frozen=True)
class UploadTarget:
    """Identifies a multipart upload held by the storage service."""
    key: str
    upload_id: str

    def to_dict(self) -> dict[str, str]:
        return {"key": self.key, "uploadId": self.upload_id}


@dataclass(frozen=True)
class UploadedPart:
    """A part accepted by storage, as returned to and sent back by the browser."""
    part_number: int
    etag: str

    def __post_init__(self) -> None:
        if self.part_number < 1:
            raise ValueError("part_number must be positive")

    def to_dict(self) -> dict[str, Any]:
        return {"partNumber": self.part_number, "etag": self.etag}

    @classmethod
    def from_dict(cls, data: Any) -> "UploadedPart":
        """Parse a part entry from a completion body."""
        if not isinstance(data, dict):
            raise ValueError("part must be an object")
        part_number = data.get("partNumber")
        etag = data.get("etag")
        if isinstance(part_number, bool) or not isinstance(part_number, int):
            raise ValueError("partNumber must be an integer")
        if not isinstance(etag, str) or not etag:
            raise ValueError("etag must be a non-empty string")
        return cls(part_number=part_number, etag=etag)


@dataclass(frozen=True)
class PartDescriptor:
    """
    Where and how to PUT one part, as issued by the upstream API.

    The headers are the exact set the destination expects; they are
    filtered before use, never extended.
    """
    id: Any
    url: str
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "PartDescriptor":
        """Parse the upstream `{id, url, headers}` response body."""
        if not isinstance(payload, dict):
            raise ValueError("expected a JSON object")
        url = payload.get("url")
        if not isinstance(url, str) or not url:
            raise ValueError("missing destination url")
        if payload.get("id") is None:
            raise ValueError("missing part id")
        headers = payload.get("headers") or {}
        if not isinstance(headers, dict):
            raise ValueError("headers must be an object")
        return cls(
            id=payload["id"],
            url=url,
            headers={str(k): str(v) for k, v in headers.items() if v is not None},
        )


@dataclass(frozen=True)
class CompletionSegment:
    """One uploaded segment reported back to the upstream API."""
    etag: str
    part_number: int
    part_id: Any = None

    def to_payload(self, part_field: SegmentPartField) -> dict[str, Any]:
        if part_field is SegmentPartField.PART_ID:
            return {"etag": self.etag, "part_id": self.part_id}
        return {"etag": self.etag, "part_number": self.part_number}


@dataclass(frozen=True)
class ForwardedAuth:
    """Caller credentials relayed to the upstream API."""
    user_id: Optional[str] = None
    cookie: Optional[str] = None

    def to_headers(self, user_id_header: str) -> dict[str, str]:
        headers = {}
        if self.user_id:
            headers[user_id_header] = self.user_id
        if self.cookie:
            headers["Cookie"] = self.cookie
        return headers


@dataclass(frozen=True)
class ProxyPath:
    """Identifiers carried in a path-style proxy upload request."""
    company_id: str
    project_id: str
    upload_id: str
    part_number: str


@dataclass
class StoredObject:
    """An object fetched from storage, with its body still unread."""
    key: str
    body: Union[bytes, AsyncIterator[bytes]]
    etag: str
    size: Optional[int] = None
    http_metadata: dict[str, str] = field(default_factory=dict)

    @property
    def http_etag(self) -> str:
        """ETag in quoted form, as it appears in an HTTP header."""
        if self.etag.startswith('"') or self.etag.startswith('W/"'):
            return self.etag
        return f'"{self.etag}"'


@dataclass(frozen=True)
class CompletedObject:
    """Result of completing a multipart upload."""
    key: str
    etag: str

    @property
    def http_etag(self) -> str:
        if self.etag.startswith('"'):
            return self.etag
        return f'"{self.etag}"'


@dataclass(frozen=True)
class ProxyPartResult:
    """Outcome of a successful three-step proxied part upload."""
    id: Any
    part_number: int
    etag: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "partNumber": self.part_number,
            "status": "success",
            "etag": self.etag,
        }
