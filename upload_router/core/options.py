"""
Routing options for the upload proxy handler.

One options value describes a deployment variant: which CORS origin to
advertise, how callers authenticate upstream, and where proxy upload
identifiers are read from.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class AuthMode(Enum):
    """How caller credentials are forwarded to the upstream API."""
    HEADER = "header"  # user-id header only
    COOKIE = "cookie"  # user-id header plus session cookie


class IdExtraction(Enum):
    """Where proxy upload identifiers come from."""
    QUERY = "query"
    PATH = "path"


class SegmentPartField(Enum):
    """
    Field naming the part inside a completion segment.

    Upstream deployments disagree on this name, so it is configured
    rather than assumed.
    """
    PART_NUMBER = "part_number"
    PART_ID = "part_id"


@dataclass(frozen=True)
class RouterOptions:
    """Configuration passed to the handler at construction."""
    cors_origin: str = "*"
    auth_mode: AuthMode = AuthMode.HEADER
    id_extraction: IdExtraction = IdExtraction.QUERY
    user_id_header: str = "Procore-Fas-User-Id"
    default_user_id: Optional[str] = None
    company_id: str = ""
    project_id: str = ""
    segment_part_field: SegmentPartField = SegmentPartField.PART_NUMBER
    stripped_headers: tuple[str, ...] = ("content-md5",)
    expose_headers: tuple[str, ...] = ("etag",)
    stream_part_body: bool = True
    cors_max_age: int = 86400

    def __post_init__(self) -> None:
        if not self.cors_origin:
            raise ValueError("cors_origin is required")
        if not self.user_id_header:
            raise ValueError("user_id_header is required")
        if self.auth_mode is AuthMode.COOKIE and self.cors_origin == "*":
            raise ValueError("cookie auth requires a concrete cors_origin, not '*'")
        if self.cors_max_age < 0:
            raise ValueError("cors_max_age cannot be negative")

    @property
    def allows_credentials(self) -> bool:
        return self.auth_mode is AuthMode.COOKIE
