from __future__ import annotations


class ProviderError(RuntimeError):
    """Raised when the weather provider answers with a non-success status or an unusable body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
