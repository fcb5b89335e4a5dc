"""
Manabee backend - AI job processing, usage quotas and push notifications.
"""

__version__ = "0.1.0"
