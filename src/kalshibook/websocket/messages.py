"""
Pydantic models for the Kalshi orderbook WebSocket frames.

    {"id": 1, "type": "subscribed", "msg": {"channel": "orderbook_delta", "sid": 7}}
    {"type": "orderbook_snapshot", "sid": 7, "seq": 1, "msg": {"market_id": ..., "yes": [[p, q], ...], "no": [...]}}
    {"type": "orderbook_delta", "sid": 7, "seq": 2, "msg": {"market_id": ..., "side": "yes", "price": 42, "delta": -3}}
    {"type": "error", "sid": 7, "seq": 3, "msg": {"code": 6, "msg": "..."}}
"""
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, StrictInt, ValidationError, field_validator

from kalshibook.errors import ProtocolViolation

ORDERBOOK_CHANNEL = "orderbook_delta"

SUBSCRIBED = "subscribed"
ORDERBOOK_SNAPSHOT = "orderbook_snapshot"
ORDERBOOK_DELTA = "orderbook_delta"
ERROR = "error"

# numbers are taken as sent: no "7" for 7, no true for 1, no 5.0 for 5
Level = Tuple[StrictInt, StrictInt]


class FrameHeader(BaseModel):
    type: str = Field(default="unknown")
    sid: Optional[StrictInt] = None
    seq: Optional[StrictInt] = None


class SubscribedBody(BaseModel):
    channel: str = ""
    sid: StrictInt


class Subscribed(BaseModel):
    id: Optional[StrictInt] = None
    type: str
    msg: SubscribedBody


class SnapshotBody(BaseModel):
    market_id: str = ""
    market_ticker: Optional[str] = None
    yes: List[Level] = Field(default_factory=list)
    no: List[Level] = Field(default_factory=list)

    @field_validator("yes", "no", mode="before")
    @classmethod
    def _null_is_empty(cls, v):
        return [] if v is None else v


class Snapshot(FrameHeader):
    msg: SnapshotBody


class DeltaBody(BaseModel):
    market_id: str = ""
    market_ticker: Optional[str] = None
    side: str
    price: StrictInt
    delta: StrictInt


class Delta(FrameHeader):
    msg: DeltaBody


class ErrorBody(BaseModel):
    code: Optional[StrictInt] = None
    msg: str = ""


class ErrorFrame(FrameHeader):
    msg: ErrorBody = Field(default_factory=ErrorBody)


def parse_frame(model, raw: Dict[str, Any]):
    """Validate ``raw`` as ``model``; malformed frames are protocol violations."""
    if not isinstance(raw, dict):
        raise ProtocolViolation(f"frame is not an object: {str(raw)[:200]}")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise ProtocolViolation(f"malformed {raw.get('type', 'frame')}: {e}") from e


def build_orderbook_subscribe(ticker: str, *, _id: int = 1) -> dict:
    if not ticker:
        raise ValueError("Provide ticker")
    return {
        "id": _id,
        "cmd": "subscribe",
        "params": {"channels": [ORDERBOOK_CHANNEL], "market_ticker": ticker},
    }
