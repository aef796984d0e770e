"""
Upstream REST API client.

Issues part destinations and records completed segments.
"""

from .client import UpstreamApiClient, UpstreamConfig, UpstreamError

__all__ = ["UpstreamApiClient", "UpstreamConfig", "UpstreamError"]
