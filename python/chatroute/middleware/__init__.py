"""HTTP middleware for the chatroute API."""

from chatroute.middleware.cors import OriginCORSMiddleware
from chatroute.middleware.request_id import RequestIDMiddleware

__all__ = ["OriginCORSMiddleware", "RequestIDMiddleware"]
