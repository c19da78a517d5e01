# -*- coding: utf-8 -*-
"""
@Time    : 2025/7/12 10:00
@Author  : QIN2DIM
@GitHub  : https://github.com/QIN2DIM
@Desc    : Error taxonomy for a conversation round.
"""


class CrosstalkError(Exception):
    """Base class for every error a round can surface."""


class ValidationError(CrosstalkError):
    """Empty input or missing required settings, rejected before any stage runs."""


class TranslationError(CrosstalkError):
    """The translation provider failed or answered with an unrecognized shape."""


class ModelError(CrosstalkError):
    def __init__(self, message: str, *, provider: str = "", status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code

    def __str__(self) -> str:
        message = super().__str__()
        if self.status_code:
            return f"{message} (HTTP {self.status_code})"
        return message


class PersistenceError(CrosstalkError):
    """Reading or writing the conversation log store failed."""
