"""Streaming order-book client for Kalshi binary markets.

The websocket feed is reconciled into immutable ``DualSideBook`` snapshots,
and ``kalshibook.pricing`` answers execution-price and liquidity questions
against them.
"""

__version__ = "0.1.0"

__all__ = [
    "api",
    "pricing",
    "streamer",
    "websocket",
]
