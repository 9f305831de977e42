"""End-to-end scenario tests for the idempotency engine.

Each scenario drives a FastAPI application through the ASGI middleware and
checks one externally observable behavior: replay, contention, key reuse,
races, expiry, crash recovery, size limits and store failures.
"""
