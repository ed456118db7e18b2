"""imagekv - FastAPI REST API layer.

Modules
-------
main
    ``create_app()`` server factory with all route handlers, and the
    ``main()`` CLI entry point.
models
    Pydantic response models.
"""
