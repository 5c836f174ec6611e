"""
Liquidity and execution-price helpers for binary markets.

Every function takes the resting bids of one side (a ``PriceLevelBook``, one
side of a ``DualSideBook`` or plain ``(price, quantity)`` pairs in any order,
which are sorted first), and answers questions for a taker buying the
complementary side. A bid at P on one side is an offer at ``100 - P`` on the
other, so the highest stored bid is the taker's best price and the walk runs
from the end of the book backward.

All functions are pure.
"""
from typing import Optional, Sequence, Tuple

from kalshibook.errors import InvalidQuantityError

CONTRACT_CENTS = 100


def complement_100(price_cents: int) -> int:
    """Maps YES price <-> NO price via binary complement (yes + no = 100)."""
    return CONTRACT_CENTS - int(price_cents)


def _levels(book) -> Sequence[Tuple[int, int]]:
    if hasattr(book, "ordered_levels"):
        return book.ordered_levels()
    return sorted(book)


def best_execution_price(book, want_quantity: int) -> Tuple[Optional[int], bool]:
    """Average execution price in cents for ``want_quantity`` contracts.

    Returns ``(price, True)`` with the average rounded up, so the cost is
    never under-reported, or ``(None, False)`` when the book cannot fill the
    whole quantity.
    """
    if isinstance(want_quantity, bool) or not isinstance(want_quantity, int) or want_quantity <= 0:
        raise InvalidQuantityError(want_quantity)

    found = 0
    weighted = 0
    for price, quantity in reversed(_levels(book)):
        converted = complement_100(price)
        take = min(quantity, want_quantity - found)
        found += take
        weighted += take * converted

        if found == want_quantity:
            # ceiling division
            return -(-weighted // want_quantity), True
        if found > want_quantity:
            raise AssertionError(f"took {found} contracts, wanted {want_quantity}")
    return None, False


def total_liquidity(book) -> int:
    """Cents needed to take every offer."""
    return sum(quantity * complement_100(price) for price, quantity in _levels(book))


def total_offers(book) -> int:
    return sum(quantity for _price, quantity in _levels(book))


def offers_under_limit(book, limit_price: int) -> int:
    """Contracts available at a converted price of ``limit_price`` or better."""
    total = 0
    for price, quantity in reversed(_levels(book)):
        if complement_100(price) > limit_price:
            break
        total += quantity
    return total
