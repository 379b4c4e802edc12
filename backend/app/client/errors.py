from __future__ import annotations


class ApiError(Exception):
    """Non-2xx response or transport failure talking to the quiz service.

    ``status_code`` is 0 when no response was received at all.
    """

    def __init__(self, status_code: int, error_code: str, message: str):
        super().__init__(message)
        self.status_code = int(status_code)
        self.error_code = error_code
        self.message = message

    @property
    def retriable(self) -> bool:
        return self.status_code == 0 or self.status_code == 429 or self.status_code >= 500

    def __repr__(self) -> str:
        return f"ApiError(status_code={self.status_code}, error_code={self.error_code!r}, message={self.message!r})"


class InvalidTransition(RuntimeError):
    """An action was requested that the attempt's current state does not allow."""
