"""Styleforge - FastAPI REST API layer.

Modules
-------
main
    FastAPI application with all route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for request validation.
dependencies
    FastAPI dependencies resolving the provider, stores and tracker.
"""
