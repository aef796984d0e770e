"""
Header transformations.

Header names are case-insensitive on the wire but plain dicts are not, and
some runtimes lower-case names while others keep them as sent. Everything
here compares names case-insensitively and leaves the caller's casing alone.
"""

from typing import Iterable, Mapping, Optional

from .options import RouterOptions

CORS_ALLOW_METHODS = "GET, POST, PUT, DELETE, PATCH, OPTIONS"


def _lowered(names: Optional[Iterable[str]]) -> Optional[set[str]]:
    if names is None:
        return None
    return {name.lower() for name in names}


def transform_headers(
    headers: Mapping[str, object],
    allow: Optional[Iterable[str]] = None,
    deny: Iterable[str] = (),
) -> dict[str, str]:
    """
    Return a filtered copy of headers.

    Args:
        headers: Source headers. Values are converted to str; None values
            are dropped.
        allow: If given, only these names are kept.
        deny: Names that are always removed, even when allowed.
    """
    allowed = _lowered(allow)
    denied = _lowered(deny) or set()

    result: dict[str, str] = {}
    for name, value in headers.items():
        lname = name.lower()
        if value is None or lname in denied:
            continue
        if allowed is not None and lname not in allowed:
            continue
        result[name] = str(value)
    return result


def get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    lname = name.lower()
    for key, value in headers.items():
        if key.lower() == lname:
            return value
    return None


def has_header(headers: Mapping[str, str], name: str) -> bool:
    return get_header(headers, name) is not None


def cors_headers(options: RouterOptions, preflight: bool = False) -> dict[str, str]:
    """Build the CORS headers attached to every handler response."""
    headers = {
        "Access-Control-Allow-Origin": options.cors_origin,
        "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
        "Access-Control-Allow-Headers": f"Content-Type, {options.user_id_header}",
    }
    if options.expose_headers:
        headers["Access-Control-Expose-Headers"] = ", ".join(options.expose_headers)
    if options.allows_credentials:
        headers["Access-Control-Allow-Credentials"] = "true"
    if options.cors_origin != "*":
        headers["Vary"] = "Origin"
    if preflight:
        headers["Access-Control-Max-Age"] = str(options.cors_max_age)
    return headers
