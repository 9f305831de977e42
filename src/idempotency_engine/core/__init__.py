"""Core logic of the idempotency engine.

This package contains the framework-agnostic parts of the engine:
- Engine: Key extraction, fingerprint checks and the record state machine
- Records: PROCESSING -> COMPLETED record lifecycle over a cache store
- Locks: Lease-based per-key mutual exclusion
- Capture: Write-through copy of the handler's response
- Replay: Response reconstruction from completed records
- Audit: Fire-and-forget delivery of completed operations
- Cleanup: Background sweeping for stores without native expiry

Adapters for specific web frameworks wrap IdempotencyEngine.
"""

from idempotency_engine.core.engine import IdempotencyEngine, Request
from idempotency_engine.core.replay import Response, replay_response

__all__ = ["IdempotencyEngine", "Request", "Response", "replay_response"]
