"""
HTTP layer: the upload handler, its routes and FastAPI dependencies.
"""
