"""
Exception types for the order-book feed, the book itself and the REST boundary.

Feed errors are session-terminating: the reconciler that raised one is done and
the caller has to resubscribe with a fresh one.
"""
from typing import Optional


class KalshiBookError(Exception):
    """Base class for everything raised by kalshibook."""


class ConfigError(KalshiBookError):
    pass


# ---- book / caller preconditions ----

class InvalidPriceError(KalshiBookError, ValueError):
    def __init__(self, price):
        super().__init__(f"price must be an integer in 0..100, got {price!r}")
        self.price = price


class InvalidQuantityError(KalshiBookError, ValueError):
    def __init__(self, quantity, requirement: str = "a positive integer"):
        super().__init__(f"quantity must be {requirement}, got {quantity!r}")
        self.quantity = quantity


class UnknownSideError(KalshiBookError, ValueError):
    def __init__(self, side):
        super().__init__(f"unknown side: {side!r}")
        self.side = side


class NegativeQuantityError(KalshiBookError):
    """A delta would drive a level below zero (corrupt feed or missed message)."""

    def __init__(self, price: int, current: int, delta: int):
        super().__init__(
            f"delta {delta} at price {price} would leave {current + delta} (current {current})"
        )
        self.price = price
        self.current = current
        self.delta = delta


# ---- feed ----

class FeedError(KalshiBookError):
    """Fatal for the feed session that raised it."""


class ProtocolViolation(FeedError):
    pass


class SequenceGapError(FeedError):
    def __init__(self, expected: int, got):
        super().__init__(f"unexpected sequence {got}, want {expected}")
        self.expected = expected
        self.got = got


class SessionMismatchError(FeedError):
    def __init__(self, expected: int, got):
        super().__init__(f"unexpected sid {got}, want {expected}")
        self.expected = expected
        self.got = got


class UnknownMessageType(FeedError):
    def __init__(self, msg_type):
        super().__init__(f"unexpected type {msg_type!r}")
        self.msg_type = msg_type


class ServerError(FeedError):
    """Application error sent by the exchange over the feed."""

    def __init__(self, code: Optional[int], message: str):
        super().__init__(f"error message ({code}): {message}")
        self.code = code
        self.message = message


class FeedClosedError(FeedError):
    pass


class TransportError(FeedError):
    pass


# ---- REST ----

class RestError(KalshiBookError):
    def __init__(self, status_code: int, body: str, url: str = ""):
        super().__init__(f"unexpected status {status_code} for {url or 'request'}: {body[:500]}")
        self.status_code = status_code
        self.body = body
        self.url = url
