"""
Cross-check a streamed book against a polled one.

The polling API can lag the stream by a few seconds, so a mismatch on a
single comparison is a hint, not proof of a reconciliation bug.
"""
from dataclasses import dataclass
from typing import List

from kalshibook.websocket.order_book import SIDES, DualSideBook


@dataclass(frozen=True)
class LevelMismatch:
    side: str
    price: int
    streamed: int
    polled: int


def diff_books(streamed: DualSideBook, polled: DualSideBook) -> List[LevelMismatch]:
    out: List[LevelMismatch] = []
    for side in SIDES:
        a = dict(streamed.side(side))
        b = dict(polled.side(side))
        for price in sorted(set(a) | set(b)):
            if a.get(price, 0) != b.get(price, 0):
                out.append(LevelMismatch(side, price, a.get(price, 0), b.get(price, 0)))
    return out


def books_match(streamed: DualSideBook, polled: DualSideBook) -> bool:
    return not diff_books(streamed, polled)
