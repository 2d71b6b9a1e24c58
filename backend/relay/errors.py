"""Exception types raised by the relay core."""


class RelayError(Exception):
    """Base exception for relay core errors."""

    def __init__(self, message: str, retriable: bool = False):
        super().__init__(message)
        self.retriable = retriable


class MemoryFetchError(RelayError):
    """Remote team memory could not be fetched."""

    def __init__(self, url: str, reason: str, status_code: int | None = None):
        super().__init__(f"Failed to fetch team memory from {url}: {reason}", retriable=True)
        self.url = url
        self.reason = reason
        self.status_code = status_code


COUNTER_STORE_UNAVAILABLE = "Counter store unavailable, cannot update rate limit counters"


class CounterStoreUnavailableError(RelayError):
    """Rate limit counters cannot be updated because the store is not connected."""

    def __init__(self, message: str = COUNTER_STORE_UNAVAILABLE):
        super().__init__(message, retriable=False)
