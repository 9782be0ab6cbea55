"""
API middleware module
"""

from tagtrail.api.middleware.telemetry_cookie import TelemetryCookieMiddleware

__all__ = ["TelemetryCookieMiddleware"]
