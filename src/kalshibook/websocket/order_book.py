from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, NamedTuple, Optional, Tuple

from kalshibook import pricing
from kalshibook.errors import InvalidPriceError, InvalidQuantityError, NegativeQuantityError, UnknownSideError

SIDES = ("yes", "no")
MIN_PRICE, MAX_PRICE = 0, 100


class PriceLevel(NamedTuple):
    price: int
    quantity: int


def _check_price(price) -> int:
    if isinstance(price, bool) or not isinstance(price, int):
        raise InvalidPriceError(price)
    if price < MIN_PRICE or price > MAX_PRICE:
        raise InvalidPriceError(price)
    return price


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantityError(quantity, "an integer")
    return quantity


def complement_side(side: str) -> str:
    if side == "yes":
        return "no"
    if side == "no":
        return "yes"
    raise UnknownSideError(side)


class PriceLevelBook:
    """Resting quantity per price for one side of one market.

    Never holds a level with quantity <= 0. Not safe for concurrent use;
    readers should work from ``ordered_levels()`` copies.
    """

    def __init__(self, levels: Optional[Iterable] = None):
        self.levels: dict[int, int] = {}  # price_cents -> size
        if levels is not None:
            self.load_snapshot(levels)

    def load_snapshot(self, pairs: Iterable) -> None:
        self.levels = self._validated(pairs)

    @staticmethod
    def _validated(pairs: Iterable) -> dict[int, int]:
        # build the replacement first so a bad level leaves the book as it was
        fresh: dict[int, int] = {}
        for price, size in pairs:
            price = _check_price(price)
            size = _check_quantity(size)
            if size < 0:
                raise NegativeQuantityError(price, 0, size)
            if size == 0:
                fresh.pop(price, None)
                continue
            fresh[price] = size
        return fresh

    def apply_delta(self, price: int, delta: int) -> int:
        price = _check_price(price)
        delta = _check_quantity(delta)
        curr = self.levels.get(price, 0)
        new_size = curr + delta
        if new_size < 0:
            raise NegativeQuantityError(price, curr, delta)
        if new_size == 0:
            self.levels.pop(price, None)
        else:
            self.levels[price] = new_size
        return new_size

    def ordered_levels(self) -> Tuple[PriceLevel, ...]:
        return tuple(PriceLevel(p, q) for p, q in sorted(self.levels.items()))

    def size_at(self, price: int) -> int:
        return self.levels.get(int(price), 0)

    def total_quantity(self) -> int:
        return sum(self.levels.values())

    def clear(self) -> None:
        self.levels.clear()

    def __len__(self) -> int:
        return len(self.levels)

    def __contains__(self, price) -> bool:
        return price in self.levels

    def __repr__(self) -> str:
        return f"PriceLevelBook({list(self.ordered_levels())!r})"


@dataclass(frozen=True)
class DualSideBook:
    """Immutable snapshot of both bid sides of a binary market.

    ``yes`` and ``no`` hold the resting bids of each side, ascending by price.
    A bid on one side is an offer on the other at ``100 - price``, so the
    queries below for side S read the complementary side's bids.
    """

    market_id: str
    yes: Tuple[PriceLevel, ...] = ()
    no: Tuple[PriceLevel, ...] = ()
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        # keep both sides ascending by price however the snapshot was built
        for label in SIDES:
            levels = getattr(self, label)
            object.__setattr__(self, label, tuple(PriceLevel(*lv) for lv in sorted(levels)))

    @classmethod
    def from_levels(cls, market_id: str, yes: Optional[Iterable] = None, no: Optional[Iterable] = None,
                    loaded_at: Optional[datetime] = None) -> "DualSideBook":
        return cls(
            market_id=market_id,
            yes=PriceLevelBook(yes or ()).ordered_levels(),
            no=PriceLevelBook(no or ()).ordered_levels(),
            loaded_at=loaded_at or datetime.now(timezone.utc),
        )

    def side(self, side: str) -> Tuple[PriceLevel, ...]:
        if side == "yes":
            return self.yes
        if side == "no":
            return self.no
        raise UnknownSideError(side)

    def _offers(self, side: str) -> Tuple[PriceLevel, ...]:
        return self.side(complement_side(side))

    # ---- taker-side queries ----
    def best_offer(self, side: str, quantity: int) -> Tuple[Optional[int], bool]:
        """Average price (cents, rounded up) to buy ``quantity`` of ``side``."""
        return pricing.best_execution_price(self._offers(side), quantity)

    def liquidity(self, side: str) -> int:
        return pricing.total_liquidity(self._offers(side))

    def total_offers(self, side: str) -> int:
        return pricing.total_offers(self._offers(side))

    def offers_under_limit(self, side: str, limit_price: int) -> int:
        return pricing.offers_under_limit(self._offers(side), limit_price)

    def best_yes_offer(self, quantity: int) -> Tuple[Optional[int], bool]:
        return self.best_offer("yes", quantity)

    def best_no_offer(self, quantity: int) -> Tuple[Optional[int], bool]:
        return self.best_offer("no", quantity)

    def yes_liquidity(self) -> int:
        return self.liquidity("yes")

    def no_liquidity(self) -> int:
        return self.liquidity("no")

    def yes_total_offers(self) -> int:
        return self.total_offers("yes")

    def no_total_offers(self) -> int:
        return self.total_offers("no")

    def yes_offers_under_limit(self, limit_price: int) -> int:
        return self.offers_under_limit("yes", limit_price)

    def no_offers_under_limit(self, limit_price: int) -> int:
        return self.offers_under_limit("no", limit_price)

    def to_dict(self) -> dict:
        return {
            "market_id": self.market_id,
            "loaded_at": self.loaded_at.isoformat(),
            "yes": [list(lv) for lv in self.yes],
            "no": [list(lv) for lv in self.no],
        }


class OrderBookState:
    """Live yes/no books for one market, owned by a single reconciler."""

    def __init__(self, market_id: str):
        self.market_id = market_id
        self.yes = PriceLevelBook()
        self.no = PriceLevelBook()

    def side(self, side: str) -> PriceLevelBook:
        if side == "yes":
            return self.yes
        if side == "no":
            return self.no
        raise UnknownSideError(side)

    def load_snapshot(self, yes: Iterable, no: Iterable) -> None:
        yes_levels = PriceLevelBook._validated(yes)
        no_levels = PriceLevelBook._validated(no)
        self.yes.levels = yes_levels
        self.no.levels = no_levels

    def apply_delta(self, side: str, price: int, delta: int) -> int:
        return self.side(side).apply_delta(price, delta)

    def snapshot(self) -> DualSideBook:
        return DualSideBook(
            market_id=self.market_id,
            yes=self.yes.ordered_levels(),
            no=self.no.ordered_levels(),
            loaded_at=datetime.now(timezone.utc),
        )

    def size_at(self, side: str, price_cents: int) -> int:
        return self.side(side).size_at(price_cents)
