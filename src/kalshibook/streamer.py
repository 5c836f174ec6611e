"""
Stream reconciled order books for one or more markets.

One FeedReconciler and one connection per market. When a feed faults the
book is thrown away and the market is resubscribed from scratch on a new
connection, with exponential backoff.

    python -m kalshibook --ticker KXBTC-25DEC31-T100000 --quantity 50
"""
import argparse
import asyncio
import dataclasses
import logging
import random
import sys
from typing import Awaitable, Callable, Dict, List, Optional

from kalshibook.api.client import KalshiRestClient
from kalshibook.auth import RequestSigner
from kalshibook.config import FeedConfig, load_config
from kalshibook.errors import ConfigError, KalshiBookError
from kalshibook.logging_config import json_msg, setup_logging
from kalshibook.validation import diff_books
from kalshibook.websocket.feed import FeedReconciler
from kalshibook.websocket.order_book import DualSideBook
from kalshibook.websocket.ws_runtime import KalshiFeedTransport

log = logging.getLogger(__name__)

BookHandler = Callable[[DualSideBook], Awaitable[None]]


def summarize(book: DualSideBook, quantity: int = 1, limit: Optional[int] = None) -> dict:
    yes_px, yes_ok = book.best_yes_offer(quantity)
    no_px, no_ok = book.best_no_offer(quantity)
    out = {
        "market": book.market_id,
        "ts": book.loaded_at.isoformat(),
        "quantity": quantity,
        "best_yes": yes_px if yes_ok else None,
        "best_no": no_px if no_ok else None,
        "yes_offers": book.yes_total_offers(),
        "no_offers": book.no_total_offers(),
        "yes_liquidity": book.yes_liquidity(),
        "no_liquidity": book.no_liquidity(),
    }
    if limit is not None:
        out["yes_under_limit"] = book.yes_offers_under_limit(limit)
        out["no_under_limit"] = book.no_offers_under_limit(limit)
    return out


class BookStreamer:
    def __init__(
        self,
        tickers: List[str],
        cfg: FeedConfig,
        *,
        on_book: Optional[BookHandler] = None,
        transport_factory: Optional[Callable[[], object]] = None,
        rest: Optional[KalshiRestClient] = None,
        reconnect: Optional[bool] = None,
    ):
        tickers = [t.strip() for t in tickers if t and t.strip()]
        if not tickers:
            raise ConfigError("No market tickers given (--ticker or MARKET_TICKERS)")
        self.tickers = tickers
        self.cfg = cfg
        self.on_book = on_book
        self.rest = rest
        self.reconnect = cfg.reconnect if reconnect is None else reconnect
        self._transport_factory = transport_factory or self._default_transport_factory()
        self._stop = asyncio.Event()
        self._tasks: List[asyncio.Task] = []
        self.latest: Dict[str, DualSideBook] = {}
        self.faults: Dict[str, int] = {t: 0 for t in tickers}
        self._counts: Dict[str, int] = {t: 0 for t in tickers}

    def _default_transport_factory(self):
        signer = None
        if self.cfg.has_credentials:
            signer = RequestSigner.from_key_file(self.cfg.key_id, self.cfg.private_key_path)
        return lambda: KalshiFeedTransport.from_config(self.cfg, signer)

    # ---- lifecycle ----
    async def run(self) -> None:
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(self._run_market(t), name=f"book_{t}") for t in self.tickers
        ]
        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            if not self._stop.is_set():
                raise
        finally:
            for t in self._tasks:
                t.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []

    async def stop(self) -> None:
        self._stop.set()
        for t in self._tasks:
            t.cancel()

    # ---- per market ----
    async def _run_market(self, ticker: str) -> None:
        backoff = self.cfg.min_backoff
        while not self._stop.is_set():
            reconciler = FeedReconciler(ticker)
            try:
                await self._run_session(reconciler)
                log.warning("feed_session_ended", extra={"ticker": ticker, "accepted": reconciler.accepted})
            except KalshiBookError as e:
                self.faults[ticker] += 1
                log.error(
                    "feed_session_failed",
                    extra={"ticker": ticker, "error": str(e)[:500], "faults": self.faults[ticker]},
                )
                if not self.reconnect:
                    raise

            if not self.reconnect or self._stop.is_set():
                break

            # a session that got a book through resets the backoff
            if reconciler.accepted:
                backoff = self.cfg.min_backoff
            sleep_for = backoff + random.uniform(0, backoff * 0.1)
            log.info("feed_resubscribing", extra={"ticker": ticker, "reconnecting_in": round(sleep_for, 2)})
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=sleep_for)
            except asyncio.TimeoutError:
                pass
            backoff = min(backoff * 2, self.cfg.max_backoff)

    async def _run_session(self, reconciler: FeedReconciler) -> None:
        out: asyncio.Queue = asyncio.Queue(maxsize=self.cfg.output_maxsize)
        transport = self._transport_factory()
        await transport.connect()
        feed_task = asyncio.create_task(reconciler.run(transport, out), name=f"feed_{reconciler.market_ticker}")
        try:
            await self._consume(out, feed_task)
        finally:
            feed_task.cancel()
            await asyncio.gather(feed_task, return_exceptions=True)
            await transport.close()

    async def _consume(self, out: asyncio.Queue, feed_task: asyncio.Task) -> None:
        while True:
            getter = asyncio.ensure_future(out.get())
            try:
                done, _ = await asyncio.wait({getter, feed_task}, return_when=asyncio.FIRST_COMPLETED)
            except asyncio.CancelledError:
                getter.cancel()
                raise
            if feed_task not in done:
                await self._handle(getter.result())
                continue

            faulted = feed_task.cancelled() or feed_task.exception() is not None
            pending = []
            if getter.done() and not getter.cancelled():
                pending.append(getter.result())
            else:
                getter.cancel()
            while not out.empty():
                pending.append(out.get_nowait())
            if faulted:
                # anything not yet handled predates the fault; drop it
                feed_task.result()
                return
            for book in pending:
                await self._handle(book)
            return

    async def _handle(self, book: DualSideBook) -> None:
        self.latest[book.market_id] = book
        self._counts[book.market_id] = self._counts.get(book.market_id, 0) + 1
        if self.on_book is not None:
            await self.on_book(book)
        every = self.cfg.verify_every
        if self.rest is not None and every and self._counts[book.market_id] % every == 0:
            await self._verify(book)

    async def _verify(self, book: DualSideBook) -> None:
        try:
            polled = await asyncio.to_thread(self.rest.fetch_book, book.market_id)
        except Exception:
            log.exception("book_verify_fetch_failed", extra={"ticker": book.market_id})
            return
        mismatches = diff_books(book, polled)
        if mismatches:
            log.warning(
                "book_verify_mismatch",
                extra={"ticker": book.market_id, "count": len(mismatches),
                       "first": [m.__dict__ for m in mismatches[:5]]},
            )
        else:
            log.debug("book_verify_ok", extra={"ticker": book.market_id})


# ---- command line ----

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="kalshibook", description="Stream reconciled Kalshi order books.")
    parser.add_argument("--ticker", action="append", default=None,
                        help="Market ticker (repeatable). Defaults to MARKET_TICKERS.")
    parser.add_argument("--quantity", type=int, default=1, help="Fill size to price on every update.")
    parser.add_argument("--limit", type=int, default=None, help="Price limit (cents) for offers-under-limit.")
    parser.add_argument("--verify-every", type=int, default=None,
                        help="Cross-check against the REST book every N updates (0 = off).")
    parser.add_argument("--no-reconnect", action="store_true", help="Exit on the first feed fault.")
    parser.add_argument("--compact", action="store_true", help="Log only, no per-update output.")
    args = parser.parse_args(argv)
    if args.quantity <= 0:
        parser.error("--quantity must be positive")
    return args


async def main(argv=None) -> int:
    args = parse_args(argv)
    cfg = load_config()
    setup_logging(cfg.log_level, cfg.log_dir)

    tickers = args.ticker or cfg.market_tickers
    if args.verify_every is not None:
        cfg = dataclasses.replace(cfg, verify_every=max(0, args.verify_every))

    async def print_book(book: DualSideBook) -> None:
        if not args.compact:
            sys.stdout.write(json_msg(summarize(book, args.quantity, args.limit)) + "\n")
            sys.stdout.flush()

    rest = KalshiRestClient.from_config(cfg) if cfg.verify_every else None
    try:
        streamer = BookStreamer(tickers, cfg, on_book=print_book, rest=rest,
                                reconnect=False if args.no_reconnect else None)
    except ConfigError as e:
        log.error(str(e))
        return 2

    log.info("streamer_starting", extra={"markets": tickers})
    try:
        await streamer.run()
    except KalshiBookError as e:
        log.error("streamer_stopped", extra={"error": str(e)})
        return 1
    finally:
        if rest is not None:
            rest.close()
    return 0


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
