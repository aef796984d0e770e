"""
Route modules.

- health: liveness and readiness
- uploads: catch-all route for the upload handler
"""
