"""
API Errors - Failures raised by the remote chat and translation clients.
Transport failures surface as httpx exceptions; these cover the rest.
"""

from typing import Optional


class ChatAPIError(Exception):
    """Base error for the remote chat API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(ChatAPIError):
    """A successful response that lacks the expected payload field."""

    def __init__(self, endpoint: str, field: str):
        super().__init__(f"{field} is missing from {endpoint} response")
        self.endpoint = endpoint
        self.field = field


class TranslationError(ChatAPIError):
    """Translation request failed; message is user-facing."""
