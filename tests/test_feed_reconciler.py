import asyncio

import pytest

from kalshibook.errors import (
    FeedClosedError,
    NegativeQuantityError,
    ProtocolViolation,
    SequenceGapError,
    ServerError,
    SessionMismatchError,
    TransportError,
    UnknownMessageType,
    UnknownSideError,
)
from kalshibook.websocket.feed import FeedReconciler, FeedState

TICKER = "KXTEMP-25JUN01-T80"
SID = 7


class FakeTransport:
    """Replays canned frames; None (or running out) means end-of-stream."""

    def __init__(self, frames, block_when_empty=False, error=None):
        self.frames = list(frames)
        self.block_when_empty = block_when_empty
        self.error = error
        self.sent = []

    async def send(self, payload):
        self.sent.append(payload)

    async def recv(self):
        if self.frames:
            return self.frames.pop(0)
        if self.error is not None:
            raise self.error
        if self.block_when_empty:
            await asyncio.Event().wait()
        return None


def ack(sid=SID, _id=1):
    return {"id": _id, "type": "subscribed", "msg": {"channel": "orderbook_delta", "sid": sid}}


def snapshot(seq, yes=None, no=None, sid=SID):
    return {"type": "orderbook_snapshot", "sid": sid, "seq": seq,
            "msg": {"market_id": "abc-123", "market_ticker": TICKER, "yes": yes, "no": no}}


def delta(seq, side, price, d, sid=SID):
    return {"type": "orderbook_delta", "sid": sid, "seq": seq,
            "msg": {"market_id": "abc-123", "side": side, "price": price, "delta": d}}


def run_feed(frames, **kwargs):
    async def scenario():
        rec = FeedReconciler(TICKER)
        transport = FakeTransport(frames, **kwargs)
        out = asyncio.Queue()
        error = None
        try:
            await rec.run(transport, out)
        except Exception as e:
            error = e
        books = []
        while not out.empty():
            books.append(out.get_nowait())
        return rec, transport, books, error

    return asyncio.run(scenario())


def synced():
    rec = FeedReconciler(TICKER)
    rec.on_subscribed(ack())
    return rec


def test_subscribe_command():
    rec = FeedReconciler(TICKER, command_id=3)
    assert rec.subscribe_command() == {
        "id": 3,
        "cmd": "subscribe",
        "params": {"channels": ["orderbook_delta"], "market_ticker": TICKER},
    }


def test_stream_emits_one_book_per_message():
    rec, transport, books, error = run_feed([
        ack(),
        snapshot(1, yes=[[10, 5], [12, 1]], no=[[80, 3]]),
        delta(2, "yes", 10, -5),
        delta(3, "no", 81, 4),
    ])
    assert error is None
    assert transport.sent == [rec.subscribe_command()]
    assert rec.state is FeedState.CLOSED
    assert rec.sid == SID
    assert rec.next_seq == 4
    assert rec.exchange_market_id == "abc-123"

    assert len(books) == 3
    assert books[0].yes == ((10, 5), (12, 1))
    assert books[1].yes == ((12, 1),)
    assert books[2].no == ((80, 3), (81, 4))
    assert all(b.market_id == TICKER for b in books)


def test_sequence_gap_faults_without_applying_message():
    rec, _t, books, error = run_feed([
        ack(),
        snapshot(1, yes=[[10, 5]]),
        delta(2, "yes", 11, 1),
        delta(3, "yes", 12, 1),
        delta(5, "yes", 13, 1),
        delta(6, "yes", 14, 1),
    ])
    assert isinstance(error, SequenceGapError)
    assert error.expected == 4
    assert error.got == 5
    assert rec.state is FeedState.FAULTED
    assert rec.fault is error
    assert len(books) == 3
    assert rec.book.snapshot().yes == ((10, 5), (11, 1), (12, 1))


def test_session_mismatch_is_fatal():
    rec, _t, books, error = run_feed([ack(), snapshot(1), delta(2, "yes", 10, 1, sid=SID + 1)])
    assert isinstance(error, SessionMismatchError)
    assert error.expected == SID
    assert rec.state is FeedState.FAULTED
    assert len(books) == 1
    assert rec.book.snapshot().yes == ()


def test_message_before_ack_is_protocol_violation():
    rec, _t, books, error = run_feed([snapshot(1)])
    assert isinstance(error, ProtocolViolation)
    assert rec.state is FeedState.FAULTED
    assert books == []


def test_ack_with_wrong_id_is_protocol_violation():
    rec, _t, books, error = run_feed([ack(_id=2), snapshot(1)])
    assert isinstance(error, ProtocolViolation)
    assert rec.state is FeedState.FAULTED
    assert books == []


def test_stream_ending_before_ack_is_protocol_violation():
    rec, _t, books, error = run_feed([])
    assert isinstance(error, ProtocolViolation)
    assert rec.state is FeedState.FAULTED


def test_server_error_surfaces_code_and_message():
    frame = {"type": "error", "sid": SID, "seq": 2, "msg": {"code": 6, "msg": "Already subscribed"}}
    rec, _t, books, error = run_feed([ack(), snapshot(1), frame])
    assert isinstance(error, ServerError)
    assert error.code == 6
    assert error.message == "Already subscribed"
    assert rec.state is FeedState.FAULTED
    assert len(books) == 1


def test_unknown_message_type():
    frame = {"type": "trade", "sid": SID, "seq": 2, "msg": {}}
    rec, _t, _books, error = run_feed([ack(), snapshot(1), frame])
    assert isinstance(error, UnknownMessageType)
    assert error.msg_type == "trade"
    assert rec.state is FeedState.FAULTED


def test_unknown_side_is_fatal():
    rec, _t, books, error = run_feed([ack(), snapshot(1, yes=[[10, 1]]), delta(2, "maybe", 10, 1)])
    assert isinstance(error, UnknownSideError)
    assert rec.state is FeedState.FAULTED
    assert len(books) == 1


def test_negative_level_is_fatal_and_not_applied():
    rec, _t, books, error = run_feed([ack(), snapshot(1, yes=[[10, 1]]), delta(2, "yes", 10, -2)])
    assert isinstance(error, NegativeQuantityError)
    assert rec.state is FeedState.FAULTED
    assert rec.book.snapshot().yes == ((10, 1),)
    assert len(books) == 1


def test_malformed_delta_is_protocol_violation():
    frame = {"type": "orderbook_delta", "sid": SID, "seq": 2, "msg": {"side": "yes", "delta": 1}}
    rec, _t, _books, error = run_feed([ack(), snapshot(1), frame])
    assert isinstance(error, ProtocolViolation)
    assert rec.state is FeedState.FAULTED


def test_string_sid_in_ack_is_protocol_violation():
    bad_ack = {"id": 1, "type": "subscribed", "msg": {"channel": "orderbook_delta", "sid": str(SID)}}
    rec, _t, books, error = run_feed([bad_ack, snapshot(1)])
    assert isinstance(error, ProtocolViolation)
    assert rec.state is FeedState.FAULTED
    assert books == []


@pytest.mark.parametrize("frame", [
    {"type": "orderbook_snapshot", "sid": str(SID), "seq": 1, "msg": {"yes": [[10, 5]]}},
    {"type": "orderbook_snapshot", "sid": SID, "seq": True, "msg": {"yes": [[10, 5]]}},
    {"type": "orderbook_snapshot", "sid": SID, "seq": 1, "msg": {"yes": [["10", 5.0]]}},
])
def test_loosely_typed_frames_are_not_applied(frame):
    rec, _t, books, error = run_feed([ack(), frame])
    assert isinstance(error, ProtocolViolation)
    assert rec.state is FeedState.FAULTED
    assert rec.book.snapshot().yes == ()
    assert books == []


def test_resent_snapshot_replaces_state():
    rec, _t, books, error = run_feed([
        ack(),
        snapshot(1, yes=[[10, 5]], no=[[90, 5]]),
        delta(2, "yes", 11, 1),
        snapshot(3, yes=[[40, 2]]),
    ])
    assert error is None
    assert books[-1].yes == ((40, 2),)
    assert books[-1].no == ()


def test_null_snapshot_sides_are_empty():
    rec, _t, books, error = run_feed([ack(), snapshot(1, yes=None, no=None)])
    assert error is None
    assert books[0].yes == ()
    assert books[0].no == ()


def test_transport_error_faults():
    rec, _t, books, error = run_feed([ack(), snapshot(1)], error=TransportError("read message: reset"))
    assert isinstance(error, TransportError)
    assert rec.state is FeedState.FAULTED
    assert len(books) == 1


def test_no_messages_accepted_after_fault():
    rec = synced()
    rec.on_message(snapshot(1, yes=[[10, 1]]))
    with pytest.raises(SequenceGapError):
        rec.on_message(delta(3, "yes", 10, 1))
    with pytest.raises(FeedClosedError):
        rec.on_message(delta(2, "yes", 10, 1))
    assert rec.state is FeedState.FAULTED
    assert rec.book.snapshot().yes == ((10, 1),)


def test_no_messages_accepted_after_close():
    rec = synced()
    rec.on_message(snapshot(1))
    rec.close()
    assert rec.state is FeedState.CLOSED
    with pytest.raises(FeedClosedError):
        rec.on_message(delta(2, "yes", 10, 1))
    # closing twice is harmless
    rec.close()
    assert rec.state is FeedState.CLOSED


def test_ack_twice_rejected():
    rec = synced()
    with pytest.raises(FeedClosedError):
        rec.on_subscribed(ack())
    assert rec.state is FeedState.SYNCED


def test_cancellation_closes_without_further_emission():
    async def scenario():
        rec = FeedReconciler(TICKER)
        transport = FakeTransport([ack(), snapshot(1, yes=[[10, 1]])], block_when_empty=True)
        out = asyncio.Queue()
        task = asyncio.create_task(rec.run(transport, out))
        first = await out.get()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return rec, first, out

    rec, first, out = asyncio.run(scenario())
    assert first.yes == ((10, 1),)
    assert rec.state is FeedState.CLOSED
    assert out.empty()


def test_bounded_output_stalls_reader():
    async def scenario():
        rec = FeedReconciler(TICKER)
        frames = [ack(), snapshot(1), delta(2, "yes", 10, 1), delta(3, "yes", 10, 1)]
        transport = FakeTransport(frames, block_when_empty=True)
        out = asyncio.Queue(maxsize=1)
        task = asyncio.create_task(rec.run(transport, out))
        for _ in range(20):
            await asyncio.sleep(0)
        # snapshot sits in the queue, first delta is applied and waiting to be put
        stalled = (len(transport.frames), rec.accepted)
        books = [await out.get() for _ in range(3)]
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return stalled, books

    stalled, books = asyncio.run(scenario())
    assert stalled == (1, 2)
    assert books[-1].yes == ((10, 2),)
