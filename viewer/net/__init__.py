from .client import ApiClient
from .dedup import RequestDeduplicator
from .errors import ApiError, NetworkError

__all__ = [
    "ApiClient",
    "ApiError",
    "NetworkError",
    "RequestDeduplicator",
]
