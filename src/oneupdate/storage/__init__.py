"""Storage layer exports."""

from .db import ISO_FORMAT, Database, UploadRecord

__all__ = ["Database", "ISO_FORMAT", "UploadRecord"]
