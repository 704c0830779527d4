from __future__ import annotations


class ModelError(ValueError):
    """Structured model/theme error with a stable code for CLI mapping."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return self.message
