"""
Action resolution for inbound upload requests.

A request is dispatched first on its HTTP method, then on the `action`
query parameter. Path-style proxy uploads are recognised by path shape
alone and never need an action.
"""

import re
from enum import Enum
from typing import Optional

from .models import ProxyPath


class Action(Enum):
    MPU_CREATE = "mpu-create"
    MPU_COMPLETE = "mpu-complete"
    MPU_UPLOAD_PART = "mpu-uploadpart"
    PROXY_PUT = "s3-put"
    GET = "get"
    MPU_ABORT = "mpu-abort"
    DELETE = "delete"


ACTIONS_BY_METHOD: dict[str, tuple[Action, ...]] = {
    "POST": (Action.MPU_CREATE, Action.MPU_COMPLETE),
    "PUT": (Action.PROXY_PUT, Action.MPU_UPLOAD_PART),
    "GET": (Action.GET,),
    "DELETE": (Action.MPU_ABORT, Action.DELETE),
}

ALLOWED_METHODS = "PUT, POST, GET, DELETE"

PROXY_PATH_PATTERN = re.compile(
    r"^/companies/(?P<company_id>[^/]+)"
    r"/projects/(?P<project_id>[^/]+)"
    r"/uploads/(?P<upload_id>[^/]+)"
    r"/parts/(?P<part_number>[^/]+)/?$"
)


class RoutingError(Exception):
    """A request that cannot be dispatched, with the response it deserves."""

    status_code = 400

    def __init__(self, message: str, headers: Optional[dict[str, str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.headers = headers or {}


class InvalidRequest(RoutingError):
    """Missing or malformed request input."""


class MissingAction(RoutingError):
    def __init__(self) -> None:
        super().__init__("Missing action type")


class UnknownAction(RoutingError):
    def __init__(self, action: str, method: str) -> None:
        super().__init__(f"Unknown action {action} for {method}")
        self.action = action
        self.method = method


class MethodNotAllowed(RoutingError):
    status_code = 405

    def __init__(self) -> None:
        super().__init__("Method Not Allowed", headers={"Allow": ALLOWED_METHODS})


def resolve_action(method: str, action: Optional[str]) -> Action:
    """
    Map a method and action parameter to an Action.

    Raises:
        MethodNotAllowed: method is not one the router serves.
        MissingAction: no action parameter was given.
        UnknownAction: the action is not valid for this method.
    """
    method = method.upper()
    if method not in ACTIONS_BY_METHOD:
        raise MethodNotAllowed()
    if action is None:
        raise MissingAction()
    for candidate in ACTIONS_BY_METHOD[method]:
        if candidate.value == action:
            return candidate
    raise UnknownAction(action, method)


def parse_proxy_path(path: str) -> Optional[ProxyPath]:
    """Return the identifiers in a path-style proxy upload, or None."""
    match = PROXY_PATH_PATTERN.match(path)
    if match is None:
        return None
    return ProxyPath(**match.groupdict())


def parse_part_number(value: Optional[str]) -> int:
    """Parse a partNumber parameter, raising InvalidRequest if it is unusable."""
    if value is None:
        raise InvalidRequest("Missing partNumber or uploadId")
    if not (value.isascii() and value.isdigit()):
        raise InvalidRequest("Invalid partNumber")
    part_number = int(value)
    if part_number < 1:
        raise InvalidRequest("Invalid partNumber")
    return part_number
