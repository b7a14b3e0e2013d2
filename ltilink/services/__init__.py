"""
Services operating on resource links.
"""

from .roster_sync import RosterSyncService

__all__ = ["RosterSyncService"]
