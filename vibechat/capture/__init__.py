"""Content-addressed screen capture storage."""

from vibechat.capture.models import CaptureRecord
from vibechat.capture.scheduler import CaptureScheduler
from vibechat.capture.store import CaptureStore

__all__ = ["CaptureRecord", "CaptureScheduler", "CaptureStore"]
