"""
Freya - A synchronous request-dispatch micro framework

Path patterns, an immutable route table, a middleware pipeline and an
error classifier, served over ASGI with secure cookies, sessions and
authentication.
"""

from freya.app import Freya
from freya.config import Settings
from freya.dispatcher import Dispatcher, DispatchState
from freya.errors import ErrorClassifier
from freya.exceptions import HTTPException, ValidationError
from freya.request import Request
from freya.response import Response
from freya.routing import Route, Router, RouteTable, compile_pattern
from freya.middleware import Middleware, RateLimitMiddleware, CSRFMiddleware
from freya.session import Session, SessionMiddleware
from freya.cookies import CookieOptions, SecureCookie
from freya.auth import AuthMiddleware, User, AuthBackend
from freya.lifespan import Lifespan
from freya.multipart import UploadFile

__version__ = "0.1.0"
__all__ = [
    "Freya",
    "Settings",
    "Dispatcher",
    "DispatchState",
    "ErrorClassifier",
    "HTTPException",
    "ValidationError",
    "Request",
    "Response",
    "Route",
    "Router",
    "RouteTable",
    "compile_pattern",
    "Middleware",
    "RateLimitMiddleware",
    "CSRFMiddleware",
    "Session",
    "SessionMiddleware",
    "CookieOptions",
    "SecureCookie",
    "AuthMiddleware",
    "User",
    "AuthBackend",
    "Lifespan",
    "UploadFile",
]
