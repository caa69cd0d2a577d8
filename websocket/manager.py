"""
WebSocket connection manager.

Clients connect to ``/ws``, subscribe to channels such as ``job:{id}`` and
receive job status and strategy step messages as they happen.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Set

import orjson
from fastapi import WebSocket

from api.shared.logger import get_logger

logger = get_logger(__name__)


class MessageType(str, Enum):
    """Types of WebSocket messages."""

    JOB_STARTED = "job_started"
    JOB_PROGRESS = "job_progress"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    JOB_CANCELLED = "job_cancelled"

    STRATEGY_STEP = "strategy_step"

    PING = "ping"
    PONG = "pong"
    ERROR = "error"
    CONNECTED = "connected"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"


@dataclass
class WebSocketMessage:
    type: MessageType
    channel: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now().isoformat()

    def to_json(self) -> str:
        return orjson.dumps({
            "type": self.type.value,
            "channel": self.channel,
            "data": self.data,
            "timestamp": self.timestamp,
        }).decode()

    @classmethod
    def from_json(cls, json_str: str) -> "WebSocketMessage":
        data = orjson.loads(json_str)
        if not isinstance(data, dict):
            raise ValueError("Message must be a JSON object")
        return cls(
            type=MessageType(data.get("type", "error")),
            channel=data.get("channel", ""),
            data=data.get("data") or {},
            timestamp=data.get("timestamp"),
        )


class WebSocketManager:
    """
    Tracks connections and their channel subscriptions.
    """

    def __init__(self):
        self._connections: Set[WebSocket] = set()
        self._channels: Dict[str, Set[WebSocket]] = {}
        self._connection_info: Dict[WebSocket, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, client_id: Optional[str] = None) -> None:
        await websocket.accept()

        async with self._lock:
            self._connections.add(websocket)
            self._connection_info[websocket] = {
                "client_id": client_id,
                "connected_at": datetime.now().isoformat(),
                "subscriptions": set(),
            }

        await self.send_to_connection(
            websocket,
            WebSocketMessage(
                type=MessageType.CONNECTED,
                channel="system",
                data={"client_id": client_id, "message": "Connected to bitwise workbench"},
            ),
        )

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            subscriptions = self._connection_info.get(websocket, {}).get("subscriptions", set())
            for channel in subscriptions:
                subscribers = self._channels.get(channel)
                if subscribers is not None:
                    subscribers.discard(websocket)
                    if not subscribers:
                        del self._channels[channel]
            self._connections.discard(websocket)
            self._connection_info.pop(websocket, None)

    async def subscribe(self, websocket: WebSocket, channel: str) -> None:
        async with self._lock:
            self._channels.setdefault(channel, set()).add(websocket)
            if websocket in self._connection_info:
                self._connection_info[websocket]["subscriptions"].add(channel)

        await self.send_to_connection(
            websocket,
            WebSocketMessage(type=MessageType.SUBSCRIBED, channel=channel, data={"channel": channel}),
        )

    async def unsubscribe(self, websocket: WebSocket, channel: str) -> None:
        async with self._lock:
            subscribers = self._channels.get(channel)
            if subscribers is not None:
                subscribers.discard(websocket)
                if not subscribers:
                    del self._channels[channel]
            if websocket in self._connection_info:
                self._connection_info[websocket]["subscriptions"].discard(channel)

        await self.send_to_connection(
            websocket,
            WebSocketMessage(type=MessageType.UNSUBSCRIBED, channel=channel, data={"channel": channel}),
        )

    async def send_to_connection(self, websocket: WebSocket, message: WebSocketMessage) -> bool:
        try:
            await websocket.send_text(message.to_json())
            return True
        except Exception as e:
            logger.warning("Error sending WebSocket message: %s", e)
            await self.disconnect(websocket)
            return False

    async def _broadcast(self, targets: list, message: WebSocketMessage) -> int:
        payload = message.to_json()
        sent_count = 0
        disconnected = []
        for websocket in targets:
            try:
                await websocket.send_text(payload)
                sent_count += 1
            except Exception:
                disconnected.append(websocket)
        for ws in disconnected:
            await self.disconnect(ws)
        return sent_count

    async def broadcast_to_channel(self, channel: str, message: WebSocketMessage) -> int:
        """Send to every subscriber of ``channel``; returns the delivery count."""
        async with self._lock:
            subscribers = list(self._channels.get(channel, set()))
        return await self._broadcast(subscribers, message)

    def get_channel_subscribers(self, channel: str) -> int:
        return len(self._channels.get(channel, set()))

    def get_connection_count(self) -> int:
        return len(self._connections)

    async def handle_message(self, websocket: WebSocket, message_text: str) -> Optional[WebSocketMessage]:
        """
        Handle an incoming client message.

        Returns:
            A reply to send back, or None
        """
        try:
            message = WebSocketMessage.from_json(message_text)
        except (orjson.JSONDecodeError, ValueError) as e:
            return WebSocketMessage(
                type=MessageType.ERROR,
                channel="system",
                data={"error": f"Invalid message format: {e}"},
            )

        if message.type == MessageType.PING:
            return WebSocketMessage(
                type=MessageType.PONG,
                channel="system",
                data={"timestamp": datetime.now().isoformat()},
            )

        channel = message.data.get("channel")
        if message.type == MessageType.SUBSCRIBE and channel:
            await self.subscribe(websocket, channel)
        elif message.type == MessageType.UNSUBSCRIBE and channel:
            await self.unsubscribe(websocket, channel)
        return None


ws_manager = WebSocketManager()


# ----- job notifications -----


async def notify_job_started(job_id: str, job_data: Dict[str, Any]) -> None:
    channel = f"job:{job_id}"
    await ws_manager.broadcast_to_channel(
        channel,
        WebSocketMessage(type=MessageType.JOB_STARTED, channel=channel, data=job_data),
    )


async def notify_job_progress(
    job_id: str,
    progress: float,
    message: str = "",
    metrics: Optional[Dict[str, Any]] = None,
) -> None:
    channel = f"job:{job_id}"
    await ws_manager.broadcast_to_channel(
        channel,
        WebSocketMessage(
            type=MessageType.JOB_PROGRESS,
            channel=channel,
            data={"job_id": job_id, "progress": progress, "message": message, "metrics": metrics or {}},
        ),
    )


async def notify_job_completed(job_id: str, result: Dict[str, Any]) -> None:
    channel = f"job:{job_id}"
    await ws_manager.broadcast_to_channel(
        channel,
        WebSocketMessage(
            type=MessageType.JOB_COMPLETED,
            channel=channel,
            data={"job_id": job_id, "result": result},
        ),
    )


async def notify_job_failed(job_id: str, error: str, traceback: Optional[str] = None) -> None:
    channel = f"job:{job_id}"
    await ws_manager.broadcast_to_channel(
        channel,
        WebSocketMessage(
            type=MessageType.JOB_FAILED,
            channel=channel,
            data={"job_id": job_id, "error": error, "traceback": traceback},
        ),
    )


async def notify_job_cancelled(job_id: str) -> None:
    channel = f"job:{job_id}"
    await ws_manager.broadcast_to_channel(
        channel,
        WebSocketMessage(type=MessageType.JOB_CANCELLED, channel=channel, data={"job_id": job_id}),
    )


async def notify_strategy_step(job_id: str, step: Dict[str, Any], total_steps: int, score: float) -> None:
    """
    Stream one accepted or rejected strategy step.

    Args:
        job_id: Job running the strategy
        step: Step summary (index, operation, params, metrics, accepted)
        total_steps: Number of steps recorded so far
        score: Current score of the working bits
    """
    channel = f"job:{job_id}"
    await ws_manager.broadcast_to_channel(
        channel,
        WebSocketMessage(
            type=MessageType.STRATEGY_STEP,
            channel=channel,
            data={"job_id": job_id, "step": step, "total_steps": total_steps, "score": score},
        ),
    )
