# event sink + best-effort fan-out to observers
import asyncio
from typing import List, Optional

import httpx
import structlog
from fastapi import APIRouter, Query, Request

from .config import NODE_ID, NOTIFY_TIMEOUT
from .models import Event, EventBatch, EventRecord

log = structlog.get_logger(__name__)

router = APIRouter()


class EventLog:
    """
    Sink for the engine: numbers every event and keeps it in memory.
    Records not yet pushed to observers sit in a pending queue until drain().
    """

    def __init__(self, node_id: str = NODE_ID):
        self.node_id = node_id
        self._records: List[EventRecord] = []
        self._pending: List[EventRecord] = []

    def __call__(self, event: Event) -> None:
        rec = EventRecord(seq=len(self._records), node_id=self.node_id, event=event)
        self._records.append(rec)
        self._pending.append(rec)
        log.info("event_recorded", seq=rec.seq, kind=event.kind)

    @property
    def next_seq(self) -> int:
        return len(self._records)

    def since(self, seq: int) -> List[EventRecord]:
        return self._records[seq:]

    def drain(self) -> List[EventRecord]:
        pending, self._pending = self._pending, []
        return pending


async def deliver_to_peers(
    records: List[EventRecord],
    peers: List[str],
    timeout: float = NOTIFY_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """
    Push records to every observer concurrently. Failures are logged,
    never raised: the call that produced the events has already succeeded.
    Returns how many peers accepted the batch.
    """
    if not peers or not records:
        return 0

    payload = EventBatch(records=records).model_dump(mode="json")
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        tasks = [client.post(f"{peer}/internal/events", json=payload) for peer in peers]
        results = await asyncio.gather(*tasks, return_exceptions=True)

    delivered = 0
    for peer, res in zip(peers, results):
        if isinstance(res, Exception):
            log.warning("notify_failed", peer=peer, error=repr(res))
        elif res.status_code >= 400:
            log.warning("notify_rejected", peer=peer, status_code=res.status_code)
        else:
            delivered += 1
    return delivered


@router.get("/events")
def list_events(request: Request, since: int = Query(0, ge=0)) -> EventBatch:
    events: EventLog = request.app.state.events
    return EventBatch(records=events.since(since), next_seq=events.next_seq)
