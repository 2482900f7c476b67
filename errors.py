"""
Error types for the chat backend.

Each error carries the HTTP status it is rendered with; main.py turns them into
{"error": {"message": ..., "status": ...}} responses.
"""

from typing import Optional


class ChatError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ChatError):
    status_code = 400


class AuthError(ChatError):
    status_code = 401


class ForbiddenError(ChatError):
    status_code = 403


class ConflictError(ChatError):
    status_code = 409


class UpstreamStoreError(ChatError):
    status_code = 500
