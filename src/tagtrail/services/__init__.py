"""
Services
"""

from tagtrail.services.event_recorder import (
    EventRecorder,
    RecordOutcome,
    RecordResult,
    ReturningScope,
)

__all__ = ["EventRecorder", "RecordOutcome", "RecordResult", "ReturningScope"]
