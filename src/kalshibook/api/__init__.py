from kalshibook.api.client import KalshiRestClient

__all__ = ["KalshiRestClient"]
