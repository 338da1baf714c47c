"""Human-readable summaries of action outcomes."""

from .notice import LAST_NOTICE_OPTION, format_notice, last_notice, save_notice

__all__ = ["LAST_NOTICE_OPTION", "format_notice", "last_notice", "save_notice"]
