"""
HTTP layer for tagtrail
"""

from tagtrail.api.server import create_app

__all__ = ["create_app"]
