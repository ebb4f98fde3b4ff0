"""Web framework adapters (bare ASGI and FastAPI)."""
