"""
Idempotency engine for Python web services.

Guarantees that a state-changing operation identified by a client-chosen
idempotency key executes at most once, however many times it is submitted,
and that every duplicate submission receives the original response.
"""

from idempotency_engine.config import IdempotencyConfig
from idempotency_engine.core.engine import EngineResult, IdempotencyEngine, Outcome, Request
from idempotency_engine.core.replay import Response
from idempotency_engine.exceptions import IdempotencyError

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "EngineResult",
    "IdempotencyConfig",
    "IdempotencyEngine",
    "IdempotencyError",
    "Outcome",
    "Request",
    "Response",
]
