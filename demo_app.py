"""Demo: a small transfer API protected by the idempotency engine.

Start it with ``python demo_app.py`` (set ``IDEMPOTENCY_STORAGE_ADAPTER=redis``
and ``IDEMPOTENCY_REDIS_URL`` to use Redis), then send the same request twice:

  curl -i -X POST localhost:8000/transfers -H 'Idempotency-Key: t-1' \
       -H 'Content-Type: application/json' -d '{"source": "acc_1", "target": "acc_2", "amount": 250}'

The second call returns the first response with ``Idempotent-Replay: true``.
Sending it while the first is still running returns 409, and sending a
different body under the same key returns 422.
"""

import asyncio
import uuid
from datetime import UTC, datetime

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from idempotency_engine.adapters.asgi import ASGIIdempotencyMiddleware
from idempotency_engine.config import IdempotencyConfig
from idempotency_engine.core.audit import LoggingAuditSink
from idempotency_engine.observability.logging import configure_logging

configure_logging(level="INFO", json_output=False)

app = FastAPI(title="Transfers (idempotency engine demo)", version="0.1.0")
app.add_middleware(
    ASGIIdempotencyMiddleware,
    config=IdempotencyConfig.from_env(),
    audit_sink=LoggingAuditSink("demo.transfer_audited"),
)

_transfers: dict[str, dict] = {}


class TransferIn(BaseModel):
    source: str
    target: str
    amount: int = Field(gt=0)
    currency: str = "EUR"


class RefundIn(BaseModel):
    reason: str | None = None


def _now() -> str:
    return datetime.now(UTC).isoformat()


@app.get("/health")
async def health():
    # Reads bypass the engine; no key needed
    return {"status": "ok", "time": _now(), "transfers": len(_transfers)}


@app.post("/transfers", status_code=201)
async def create_transfer(transfer: TransferIn):
    # Slow enough to observe an in-flight 409 from a second terminal
    await asyncio.sleep(1.0)
    transfer_id = f"tr_{uuid.uuid4().hex[:12]}"
    _transfers[transfer_id] = {
        "id": transfer_id,
        "state": "settled",
        "created_at": _now(),
        **transfer.model_dump(),
    }
    return _transfers[transfer_id]


@app.post("/transfers/{transfer_id}/refund")
async def refund_transfer(transfer_id: str, refund: RefundIn):
    transfer = _transfers.get(transfer_id)
    if transfer is None:
        raise HTTPException(status_code=404, detail="unknown transfer")
    if transfer["state"] == "refunded":
        raise HTTPException(status_code=409, detail="already refunded")
    transfer.update(state="refunded", refunded_at=_now(), refund_reason=refund.reason)
    return transfer


@app.delete("/transfers/{transfer_id}", status_code=204)
async def delete_transfer(transfer_id: str):
    _transfers.pop(transfer_id, None)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
