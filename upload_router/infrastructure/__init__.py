"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- storage: Object storage (R2/S3)
- upstream: The REST API that issues part destinations

These wrappers translate between external formats and our core models.
"""
