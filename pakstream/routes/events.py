"""
PakStream Real-time Events (SSE)
Server-Sent Events for video processing progress
"""
from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse
from typing import AsyncGenerator, Dict, List, Optional, Set
import asyncio
import json
from datetime import datetime
from dataclasses import dataclass
import uuid

router = APIRouter(prefix="/api/events", tags=["events"])

# Events published by the processing queue
PROCESSING_EVENTS = ["processingProgress", "processingComplete", "processingError"]


# ============================================================
# EVENT TYPES
# ============================================================

@dataclass
class Event:
    """Server-sent event structure"""
    type: str
    data: Dict
    id: str = ""
    timestamp: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = f"evt_{uuid.uuid4().hex[:8]}"
        if not self.timestamp:
            self.timestamp = datetime.utcnow().isoformat() + "Z"

    def to_sse(self) -> str:
        """Format as SSE message"""
        payload = {
            "type": self.type,
            "data": self.data,
            "timestamp": self.timestamp,
        }
        return f"id: {self.id}\nevent: {self.type}\ndata: {json.dumps(payload)}\n\n"


# ============================================================
# EVENT MANAGER (Pub/Sub)
# ============================================================

class EventManager:
    """Fans processing events out to connected SSE clients.

    Delivery is at-most-once to clients connected at publish time; nothing
    is buffered for clients that connect later.
    """

    def __init__(self):
        self._clients: Dict[str, asyncio.Queue] = {}
        self._topics: Dict[str, Set[str]] = {}  # topic -> client_ids

    def connect(self, client_id: str, topics: Optional[List[str]] = None) -> asyncio.Queue:
        """Register a new client"""
        queue: asyncio.Queue = asyncio.Queue()
        self._clients[client_id] = queue

        topics = topics or ["all"]
        for topic in topics:
            self._topics.setdefault(topic, set()).add(client_id)

        queue.put_nowait(Event(
            type="connected",
            data={"client_id": client_id, "topics": topics}
        ))
        return queue

    def disconnect(self, client_id: str):
        """Remove a client"""
        self._clients.pop(client_id, None)
        for subscribers in self._topics.values():
            subscribers.discard(client_id)

    def publish(self, event_name: str, payload: Dict) -> int:
        """Fire-and-forget broadcast. Returns the number of clients reached."""
        event = Event(type=event_name, data=payload)
        client_ids = self._topics.get(event_name, set()) | self._topics.get("all", set())

        delivered = 0
        for client_id in client_ids:
            queue = self._clients.get(client_id)
            if queue is not None:
                queue.put_nowait(event)
                delivered += 1
        return delivered

    @property
    def client_count(self) -> int:
        return len(self._clients)

    @property
    def topics(self) -> List[str]:
        return [topic for topic, subscribers in self._topics.items() if subscribers]


# ============================================================
# SSE ROUTES
# ============================================================

async def event_stream(request: Request, manager: EventManager, client_id: str, topics: list) -> AsyncGenerator:
    """Generator for SSE stream"""
    queue = manager.connect(client_id, topics)

    try:
        while True:
            if await request.is_disconnected():
                break

            try:
                # Wait for events with timeout (for keepalive)
                event = await asyncio.wait_for(queue.get(), timeout=30.0)
                yield event.to_sse()
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"

    finally:
        manager.disconnect(client_id)


@router.get("/stream")
async def sse_stream(request: Request, topics: str = "all"):
    """
    SSE endpoint for processing events.

    Query params:
    - topics: Comma-separated event names (all, processingProgress,
      processingComplete, processingError)

    Example:
    ```
    const source = new EventSource('/api/events/stream?topics=processingComplete');
    source.addEventListener('processingComplete', (event) => {
        const data = JSON.parse(event.data);
        console.log(data.data.videoId);
    });
    ```
    """
    client_id = f"client_{uuid.uuid4().hex[:8]}"
    topic_list = [t.strip() for t in topics.split(",") if t.strip()]

    return StreamingResponse(
        event_stream(request, request.app.state.events, client_id, topic_list),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        }
    )


@router.get("/status")
async def events_status(request: Request):
    """Get current event system status"""
    manager: EventManager = request.app.state.events
    return {
        "ok": True,
        "connected_clients": manager.client_count,
        "topics": manager.topics,
        "events": PROCESSING_EVENTS,
    }
