"""
Core request-routing logic for the upload router.

This package is framework-agnostic: it doesn't import FastAPI, boto3 or
httpx. Value objects, routing options, action resolution and header
transformations live here so they can be tested in isolation.
"""
