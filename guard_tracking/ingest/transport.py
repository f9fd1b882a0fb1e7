"""
Socket.IO transport for the live position stream.

The first connect is a single attempt, so a refused server surfaces at once
as TransportError instead of holding the caller through a backoff loop.
Once connected, reconnection (exponential backoff between
`reconnection_delay` and `reconnection_delay_max`, bounded attempts) runs in
the Socket.IO client's background task. The ingestor only sees connect /
disconnect / connect_error events.
"""

import logging
from typing import Any, Callable, List, Optional

import socketio
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from guard_tracking.ingest.ingestor import TrackingError
from guard_tracking.models.session import TrackingConfig

logger = logging.getLogger(__name__)


class TransportError(TrackingError):
    """Raised when the stream transport cannot be opened."""
    pass


class SocketIOTransport:
    """Duplex connection to the tracking server."""

    def __init__(
        self,
        config: TrackingConfig,
        client: Optional[socketio.AsyncClient] = None,
    ):
        self.config = config
        self._client = client or socketio.AsyncClient(
            reconnection=True,
            reconnection_attempts=config.reconnection_attempts,
            reconnection_delay=config.reconnection_delay,
            reconnection_delay_max=config.reconnection_delay_max,
            logger=False,
        )

    @property
    def connected(self) -> bool:
        return self._client.connected

    @property
    def max_attempts(self) -> int:
        return self.config.reconnection_attempts

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._client.on(event, handler)

    async def connect(self, auth: Optional[dict] = None) -> None:
        transports: List[str] = list(self.config.transports)
        logger.info("Connecting to %s", self.config.server_url)
        try:
            await self._client.connect(
                self.config.server_url,
                auth=auth,
                transports=transports,
                socketio_path=self.config.socket_path,
                retry=False,
            )
        except SocketIOConnectionError as e:
            raise TransportError(
                f"Cannot connect to {self.config.server_url}: {e}"
            ) from e

    async def emit(self, event: str, data: Any = None) -> None:
        await self._client.emit(event, data)

    async def disconnect(self) -> None:
        await self._client.disconnect()
