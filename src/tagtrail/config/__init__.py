"""
Configuration module
"""

from tagtrail.config.settings import TelemetrySettings, settings

__all__ = ["TelemetrySettings", "settings"]
