"""
Single Kalshi WS connection used by one FeedReconciler.

Unlike a long-running market-data runtime this transport never reconnects on
its own: a dropped connection means the book stream has a hole in it, so the
caller builds a new transport and a new reconciler instead.
"""
import logging
import ssl
from typing import Optional
from urllib.parse import urlparse

import certifi
import orjson
import websockets
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK, WebSocketException

from kalshibook.auth import RequestSigner
from kalshibook.config import FeedConfig
from kalshibook.errors import ProtocolViolation, TransportError

log = logging.getLogger(__name__)

METHOD = "GET"


class KalshiFeedTransport:
    """
    Usage:
        async with KalshiFeedTransport.from_config(cfg) as transport:
            await transport.send({...})
            frame = await transport.recv()   # dict, or None once the server closes
    """

    def __init__(
        self,
        ws_url: str,
        signer: Optional[RequestSigner] = None,
        *,
        open_timeout: float = 25.0,
        ping_interval: float = 20.0,
        ping_timeout: float = 20.0,
    ):
        self.ws_url = ws_url
        self.path = urlparse(ws_url).path or "/"
        self.signer = signer
        self.open_timeout = float(open_timeout)
        self.ping_interval = float(ping_interval)
        self.ping_timeout = float(ping_timeout)

        # TLS
        self.ssl_ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        self.ssl_ctx.load_verify_locations(certifi.where())

        self._ws = None

    @classmethod
    def from_config(cls, cfg: FeedConfig, signer: Optional[RequestSigner] = None) -> "KalshiFeedTransport":
        if signer is None and cfg.has_credentials:
            signer = RequestSigner.from_key_file(cfg.key_id, cfg.private_key_path)
        return cls(
            cfg.ws_url,
            signer,
            open_timeout=cfg.open_timeout,
            ping_interval=cfg.ping_interval,
            ping_timeout=cfg.ping_timeout,
        )

    # ---- lifecycle ----
    async def connect(self) -> None:
        if self._ws is not None:
            return
        headers = self.signer.headers(METHOD, self.path) if self.signer else {}
        connect_kwargs = {}
        if self.ws_url.startswith("wss://"):
            connect_kwargs["ssl"] = self.ssl_ctx
        log.info("ws_connecting", extra={"url": self.ws_url})
        try:
            self._ws = await websockets.connect(
                self.ws_url,
                additional_headers=headers,
                open_timeout=self.open_timeout,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_timeout,
                max_size=None,  # snapshots of deep books can be large
                **connect_kwargs,
            )
        except (OSError, TimeoutError, WebSocketException) as e:
            raise TransportError(f"connect {self.ws_url}: {e}") from e
        log.info("ws_connected", extra={"url": self.ws_url})

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close(code=1000)
            log.info("ws_closed", extra={"url": self.ws_url})

    async def __aenter__(self) -> "KalshiFeedTransport":
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    # ---- io ----
    async def send(self, payload) -> None:
        if isinstance(payload, dict):
            payload = orjson.dumps(payload).decode("utf-8")
        if self._ws is None:
            raise TransportError("WebSocket not connected")
        try:
            await self._ws.send(payload)
        except ConnectionClosedOK as e:
            raise TransportError("WebSocket closed") from e
        except ConnectionClosedError as e:
            raise TransportError(f"WebSocket closed: {e}") from e

    async def recv(self) -> Optional[dict]:
        """Next decoded frame, or None when the server closed the stream normally."""
        if self._ws is None:
            raise TransportError("WebSocket not connected")
        try:
            raw = await self._ws.recv()
        except ConnectionClosedOK:
            return None
        except ConnectionClosedError as e:
            raise TransportError(f"read message: {e}") from e
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise ProtocolViolation(f"read header: {str(raw)[:200]}") from e
