"""Scheduled housekeeping jobs."""

from .cleanup import CleanupSummary, ObjectStore, UploadCleanup

__all__ = ["CleanupSummary", "ObjectStore", "UploadCleanup"]
