"""Framework adapters for the idempotency engine.

- asgi.py: ASGI middleware for FastAPI, Starlette, etc.

Adapters convert between framework-specific request/response objects and
the engine's Request and ResponseSink.
"""

from idempotency_engine.adapters.asgi import ASGIIdempotencyMiddleware

__all__ = ["ASGIIdempotencyMiddleware"]
