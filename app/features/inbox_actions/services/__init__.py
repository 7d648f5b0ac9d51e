"""
Service layer for the inbox actions feature.
"""

from .anonymizer import ChildAnonymizer
from .calendar_sync import CalendarSyncResult, CalendarSyncService
from .cleanup_service import CleanupService, cleanup_service
from .few_shot import FewShotBuilder, FewShotSection
from .job_service import JobService, job_service
from .sender_scores import SenderScoreService, sender_score_service

__all__ = [
    "CalendarSyncResult",
    "CalendarSyncService",
    "ChildAnonymizer",
    "CleanupService",
    "FewShotBuilder",
    "FewShotSection",
    "JobService",
    "cleanup_service",
    "job_service",
    "SenderScoreService",
    "sender_score_service",
]
