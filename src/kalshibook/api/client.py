import logging
import time
from typing import Optional
from urllib.parse import urlparse

import requests

from kalshibook.auth import RequestSigner
from kalshibook.config import FeedConfig
from kalshibook.errors import RestError
from kalshibook.websocket.order_book import DualSideBook

logger = logging.getLogger(__name__)

BOOK_DEPTH = 100


class KalshiRestClient:
    """Polling side of the exchange API.

    Only the orderbook endpoint is wrapped; it is used to cross-check the
    streamed book, not to drive it.
    """

    def __init__(self, base_url: str, signer: Optional[RequestSigner] = None, timeout: float = 5.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.signer = signer
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, cfg: FeedConfig, signer: Optional[RequestSigner] = None) -> "KalshiRestClient":
        if signer is None and cfg.has_credentials:
            signer = RequestSigner.from_key_file(cfg.key_id, cfg.private_key_path)
        return cls(cfg.api_base, signer=signer, timeout=cfg.rest_timeout)

    def _endpoint(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _headers(self, method: str, path: str) -> dict:
        headers = {'Accept': 'application/json'}
        if self.signer is not None:
            # the signed path includes any base path from base_url, e.g. /trade-api/v2
            base_path = urlparse(self.base_url).path.rstrip('/')
            headers.update(self.signer.headers(method, f"{base_path}{path}"))
        return headers

    def _get(self, path: str, params: Optional[dict] = None) -> dict:
        url = self._endpoint(path)
        t0 = int(time.time() * 1000)
        r = self.session.get(url, params=params, headers=self._headers('GET', path), timeout=self.timeout)
        latency = int(time.time() * 1000) - t0
        if r.status_code >= 400:
            logger.error('rest_error', extra={'url': url, 'status': r.status_code, 'latency_ms': latency})
            raise RestError(r.status_code, r.text, url)
        logger.debug('rest_ok', extra={'url': url, 'status': r.status_code, 'latency_ms': latency})
        return r.json()

    def fetch_book(self, ticker: str) -> DualSideBook:
        """Point-in-time yes/no bids for ``ticker``."""
        j = self._get(f'/markets/{ticker}/orderbook', params={'depth': BOOK_DEPTH})
        ob = j.get('orderbook') if isinstance(j, dict) else None
        if not isinstance(ob, dict):
            raise RestError(200, str(j)[:500], self._endpoint(f'/markets/{ticker}/orderbook'))
        # empty sides come back as null
        return DualSideBook.from_levels(ticker, ob.get('yes') or [], ob.get('no') or [])

    def close(self) -> None:
        self.session.close()
