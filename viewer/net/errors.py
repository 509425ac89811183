from __future__ import annotations

from typing import Any


class ApiError(Exception):
    """
    A non-2xx response (or transport failure) from the viewer API.

    `data` is the raw payload: parsed JSON when the body was JSON, the text otherwise.
    """

    def __init__(self, message: str, status: int, data: Any = None):
        super().__init__(message)
        self.status = int(status)
        self.data = data

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status}, message={str(self)!r})"


class NetworkError(ApiError):
    """
    The request never produced an HTTP response (DNS, connect, timeout...).
    """

    def __init__(self, message: str, data: Any = None):
        super().__init__(message, status=0, data=data)
