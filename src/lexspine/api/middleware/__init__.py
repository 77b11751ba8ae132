"""ASGI middleware and exception handlers for the HTTP API."""

from lexspine.api.middleware.auth import AuthMiddleware
from lexspine.api.middleware.errors import (
    lexspine_exception_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from lexspine.api.middleware.request_id import RequestIDMiddleware

__all__ = [
    "AuthMiddleware",
    "RequestIDMiddleware",
    "lexspine_exception_handler",
    "request_validation_handler",
    "unhandled_exception_handler",
]
