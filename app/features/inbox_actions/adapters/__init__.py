"""
External API adapters for the inbox actions feature.
"""

from .base import InboxAdapter
from .google_workspace import GoogleWorkspaceAdapter, build_inbox_query, local_day_window

__all__ = ["GoogleWorkspaceAdapter", "InboxAdapter", "build_inbox_query", "local_day_window"]
