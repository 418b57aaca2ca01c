"""HTTP layer: routers and request/response schemas."""
