"""HTTP API: FastAPI app factory, routes and schemas."""
