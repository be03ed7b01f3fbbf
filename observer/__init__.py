from .poller import RunFailedError, StatusObserver, store_fetcher

__all__ = ["StatusObserver", "RunFailedError", "store_fetcher"]
