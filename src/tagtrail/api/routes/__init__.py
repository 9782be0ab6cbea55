"""
API route classes
"""

from tagtrail.api.routes.event_routes import EventRoutes
from tagtrail.api.routes.page_routes import PageRoutes
from tagtrail.api.routes.scan_routes import ScanRoutes

__all__ = ["EventRoutes", "PageRoutes", "ScanRoutes"]
