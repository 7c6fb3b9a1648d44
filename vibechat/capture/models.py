"""CaptureRecord data model."""

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel


class CaptureRecord(BaseModel):
    """A timestamped screen image with its content hash.

    Attributes:
        timestamp: When the image was taken (aware UTC).
        image_path: Content-addressed file inside the capture directory.
        hash: SHA-256 hex digest of the encoded image bytes.
        width: Pixel width read from the image itself.
        height: Pixel height read from the image itself.
    """

    timestamp: datetime
    image_path: Path
    hash: str
    width: int
    height: int
