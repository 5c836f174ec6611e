"""
Per-market orderbook feed reconciler.

Consumes the ``orderbook_delta`` channel for one market ticker and keeps a
yes/no book in sync with it:

    SUBSCRIBING --ack--> SYNCED --close / end-of-stream / cancel--> CLOSED
         |                  |
         +------fault-------+--> FAULTED

Every frame after the ack must carry the ack's sid and the next sequence
number. A gap, a foreign sid, an unknown frame type, a server error or a
delta that would leave a negative level is terminal: the book can no longer
be trusted, and recovery means a new connection and a new reconciler.
"""
import asyncio
import enum
import logging
from typing import Optional

from kalshibook.errors import (
    FeedClosedError,
    KalshiBookError,
    ProtocolViolation,
    SequenceGapError,
    ServerError,
    SessionMismatchError,
    UnknownMessageType,
)
from kalshibook.websocket import messages
from kalshibook.websocket.order_book import DualSideBook, OrderBookState

log = logging.getLogger(__name__)


class FeedState(enum.Enum):
    SUBSCRIBING = "subscribing"
    SYNCED = "synced"
    CLOSED = "closed"
    FAULTED = "faulted"


class FeedReconciler:
    """
    Usage:
        rec = FeedReconciler("KXBTC-25DEC31-T100000")
        out = asyncio.Queue(maxsize=1)
        task = asyncio.create_task(rec.run(transport, out))
        book = await out.get()
    """

    def __init__(self, market_ticker: str, *, command_id: int = 1):
        if not market_ticker:
            raise ValueError("market_ticker is required")
        self.market_ticker = market_ticker
        self.command_id = command_id
        self.state = FeedState.SUBSCRIBING
        self.sid: Optional[int] = None
        self.next_seq: Optional[int] = None
        self.exchange_market_id: Optional[str] = None
        self.book = OrderBookState(market_ticker)
        self.fault: Optional[BaseException] = None
        self.accepted = 0

    # ---- state ----
    @property
    def is_terminal(self) -> bool:
        return self.state in (FeedState.CLOSED, FeedState.FAULTED)

    def _fail(self, exc: BaseException) -> BaseException:
        self.state = FeedState.FAULTED
        self.fault = exc
        log.error(
            "feed_fault",
            extra={"ticker": self.market_ticker, "sid": self.sid, "next_seq": self.next_seq, "error": str(exc)},
        )
        return exc

    def close(self) -> None:
        if self.is_terminal:
            return
        self.state = FeedState.CLOSED
        log.info("feed_closed", extra={"ticker": self.market_ticker, "sid": self.sid, "accepted": self.accepted})

    # ---- protocol ----
    def subscribe_command(self) -> dict:
        return messages.build_orderbook_subscribe(self.market_ticker, _id=self.command_id)

    def on_subscribed(self, raw: dict) -> int:
        """Check the subscription ack and move to SYNCED. Returns the sid."""
        if self.state is not FeedState.SUBSCRIBING:
            raise FeedClosedError(f"ack received in state {self.state.value}")

        if not isinstance(raw, dict) or raw.get("type") != messages.SUBSCRIBED:
            raise self._fail(ProtocolViolation(f"unexpected message: {str(raw)[:300]}"))
        try:
            ack = messages.parse_frame(messages.Subscribed, raw)
        except ProtocolViolation as e:
            raise self._fail(e)
        if ack.id != self.command_id:
            raise self._fail(ProtocolViolation(f"unexpected id: {ack.id}, want {self.command_id}"))

        self.sid = ack.msg.sid
        self.next_seq = 1
        self.state = FeedState.SYNCED
        log.info(
            "feed_subscribed",
            extra={"ticker": self.market_ticker, "sid": self.sid, "channel": ack.msg.channel},
        )
        return self.sid

    def on_message(self, raw: dict) -> DualSideBook:
        """Apply one frame and return the resulting snapshot.

        Raises a ``FeedError`` (or ``NegativeQuantityError`` / ``UnknownSideError``)
        and leaves the reconciler FAULTED when the frame cannot be applied.
        """
        if self.is_terminal:
            raise FeedClosedError(f"feed for {self.market_ticker} is {self.state.value}")
        if self.state is FeedState.SUBSCRIBING:
            raise self._fail(ProtocolViolation(f"message before subscription ack: {str(raw)[:300]}"))

        try:
            header = messages.parse_frame(messages.FrameHeader, raw)
        except ProtocolViolation as e:
            raise self._fail(e)

        if header.sid != self.sid:
            raise self._fail(SessionMismatchError(self.sid, header.sid))
        if header.seq != self.next_seq:
            raise self._fail(SequenceGapError(self.next_seq, header.seq))
        self.next_seq += 1

        try:
            self._dispatch(header.type, raw)
        except KalshiBookError as e:
            raise self._fail(e)

        self.accepted += 1
        return self.book.snapshot()

    def _dispatch(self, msg_type: str, raw: dict) -> None:
        if msg_type == messages.ORDERBOOK_SNAPSHOT:
            snap = messages.parse_frame(messages.Snapshot, raw)
            self.book.load_snapshot(snap.msg.yes, snap.msg.no)
            if snap.msg.market_id and snap.msg.market_id != self.exchange_market_id:
                self.exchange_market_id = snap.msg.market_id
            log.debug(
                "feed_snapshot",
                extra={"ticker": self.market_ticker, "seq": snap.seq,
                       "yes_levels": len(self.book.yes), "no_levels": len(self.book.no)},
            )
        elif msg_type == messages.ORDERBOOK_DELTA:
            delta = messages.parse_frame(messages.Delta, raw)
            self.book.apply_delta(delta.msg.side, delta.msg.price, delta.msg.delta)
        elif msg_type == messages.ERROR:
            err = messages.parse_frame(messages.ErrorFrame, raw)
            raise ServerError(err.msg.code, err.msg.msg)
        else:
            raise UnknownMessageType(msg_type)

    # ---- driver ----
    async def run(self, transport, out: asyncio.Queue) -> None:
        """Subscribe over ``transport`` and push a snapshot to ``out`` per accepted frame.

        ``transport`` needs ``send(dict)`` and ``recv() -> dict | None`` coroutines;
        ``None`` means the stream ended. Returns on end-of-stream, raises on a
        fault, and on cancellation closes and re-raises.
        """
        try:
            await transport.send(self.subscribe_command())
            ack = await transport.recv()
            if ack is None:
                raise self._fail(ProtocolViolation("stream ended before subscription ack"))
            self.on_subscribed(ack)

            while not self.is_terminal:
                raw = await transport.recv()
                if self.is_terminal:
                    # closed by the owner while we were waiting on the socket
                    break
                if raw is None:
                    log.warning("feed_end_of_stream", extra={"ticker": self.market_ticker, "sid": self.sid})
                    self.close()
                    break
                book = self.on_message(raw)
                await out.put(book)
        except asyncio.CancelledError:
            self.close()
            raise
        except Exception as e:
            # transport-side failures arrive here without having faulted us yet
            if not self.is_terminal:
                self._fail(e)
            raise
