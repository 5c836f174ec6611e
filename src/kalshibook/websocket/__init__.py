from kalshibook.websocket.feed import FeedReconciler, FeedState
from kalshibook.websocket.order_book import DualSideBook, OrderBookState, PriceLevel, PriceLevelBook

__all__ = [
    "DualSideBook",
    "FeedReconciler",
    "FeedState",
    "OrderBookState",
    "PriceLevel",
    "PriceLevelBook",
]
