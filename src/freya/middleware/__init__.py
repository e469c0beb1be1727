"""
Middleware package for Freya framework.
"""

from freya.middleware.base import Middleware, MiddlewareEntry, Pipeline
from freya.middleware.bodyparser import BodyParserMiddleware
from freya.middleware.cors import CORSMiddleware
from freya.middleware.csrf import CSRFMiddleware
from freya.middleware.logging import RequestLoggingMiddleware
from freya.middleware.ratelimit import RateLimitMiddleware, RateLimitStore
from freya.middleware.security import RequestIdMiddleware, SecurityHeadersMiddleware
from freya.middleware.static import DirectoryIndexMiddleware, StaticFilesMiddleware
from freya.middleware.utility import FaviconMiddleware, MethodOverrideMiddleware, ResponseTimeMiddleware

__all__ = [
    "Middleware",
    "MiddlewareEntry",
    "Pipeline",
    "BodyParserMiddleware",
    "CORSMiddleware",
    "CSRFMiddleware",
    "RequestLoggingMiddleware",
    "RateLimitMiddleware",
    "RateLimitStore",
    "RequestIdMiddleware",
    "SecurityHeadersMiddleware",
    "DirectoryIndexMiddleware",
    "StaticFilesMiddleware",
    "FaviconMiddleware",
    "MethodOverrideMiddleware",
    "ResponseTimeMiddleware",
]
