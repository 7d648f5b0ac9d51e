"""
Repository subpackage for the inbox actions feature.
"""

from .action_repository import EventRepository, TodoRepository
from .analysis_repository import AnalysisRepository
from .email_repository import EmailRepository
from .feedback_repository import FeedbackRepository
from .job_repository import JobRepository, JobRepositoryError
from .profile_repository import ChildProfileRepository

__all__ = [
    "AnalysisRepository",
    "ChildProfileRepository",
    "EmailRepository",
    "EventRepository",
    "FeedbackRepository",
    "JobRepository",
    "JobRepositoryError",
    "TodoRepository",
]
