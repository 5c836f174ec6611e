"""
Kalshi API-key request signing, shared by the WebSocket feed and the REST client.

Signature = base64(RSA-PSS-SHA256(timestamp_ms + METHOD + path)).
"""
import base64
import time
from typing import Dict, Optional

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from kalshibook.errors import ConfigError


class RequestSigner:
    def __init__(self, key_id: str, private_key):
        self.key_id = key_id
        self._private_key = private_key

    @classmethod
    def from_key_file(cls, key_id: str, path: str, password: Optional[bytes] = None) -> "RequestSigner":
        if not key_id or not path:
            raise ConfigError("Missing KALSHI_KEY_ID or KALSHI_PRIVATE_KEY_PATH")
        with open(path, "rb") as f:
            private_key = serialization.load_pem_private_key(f.read(), password=password)
        return cls(key_id, private_key)

    def sign(self, message: bytes) -> str:
        return base64.b64encode(
            self._private_key.sign(
                message,
                padding.PSS(mgf=padding.MGF1(hashes.SHA256()),
                            salt_length=padding.PSS.DIGEST_LENGTH),
                hashes.SHA256(),
            )
        ).decode("utf-8")

    def headers(self, method: str, path: str, now_ms: Optional[int] = None) -> Dict[str, str]:
        # query strings are not part of the signed path
        path = path.split("?", 1)[0]
        if not path.startswith("/"):
            path = "/" + path
        ts = str(int(now_ms if now_ms is not None else time.time() * 1000))
        return {
            "KALSHI-ACCESS-KEY": self.key_id,
            "KALSHI-ACCESS-TIMESTAMP": ts,
            "KALSHI-ACCESS-SIGNATURE": self.sign((ts + method.upper() + path).encode("utf-8")),
        }
