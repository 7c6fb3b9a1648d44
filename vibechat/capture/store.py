"""CaptureStore: content-addressed screenshot directory with age-based eviction."""

from __future__ import annotations

import hashlib
import io
import logging
import os
import re
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from PIL import Image, ImageGrab

from vibechat.capture.models import CaptureRecord
from vibechat.errors import CaptureError

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

logger = logging.getLogger(__name__)

HASH_PREFIX_LENGTH = 16
CAPTURE_SUFFIX = ".png"

_FILENAME_RE = re.compile(r"^(?P<prefix>[0-9a-f]+)_(?P<ts>\d+)\.png$")


def _grab_screen() -> Image.Image:
    return ImageGrab.grab()


def _timestamp_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


class CaptureStore:
    """Owns the capture directory and every file in it.

    Filenames are ``{hash-prefix}_{timestamp-ms}.png`` so identical content
    captured at different times stays distinguishable.  Files are written
    to a uniquely named hidden file and hard-linked into place; a published
    capture is never modified.

    All methods are synchronous.  Async callers wrap them in
    ``asyncio.to_thread()``.
    """

    def __init__(
        self,
        root: Path,
        grabber: Callable[[], Image.Image] | None = None,
    ) -> None:
        self._root = root
        self._grabber = grabber or _grab_screen

    @property
    def root(self) -> Path:
        return self._root

    # -- Capture ---------------------------------------------------------------

    def capture(self) -> CaptureRecord:
        """Grab the screen and persist it. Raises ``CaptureError`` on any failure."""
        try:
            image = self._grabber()
            buf = io.BytesIO()
            image.save(buf, format="PNG")
        except Exception as exc:
            msg = f"Screen grab failed: {exc}"
            raise CaptureError(msg) from exc

        data = buf.getvalue()
        digest = hashlib.sha256(data).hexdigest()
        width, height = image.size

        try:
            self._root.mkdir(parents=True, exist_ok=True)
            tmp = self._root / f".{uuid.uuid4().hex}.part"
            tmp.write_bytes(data)
            try:
                path, ts_ms = self._publish(tmp, digest, _timestamp_ms(datetime.now(UTC)))
            finally:
                tmp.unlink(missing_ok=True)
        except OSError as exc:
            msg = f"Could not write capture to {self._root}: {exc}"
            raise CaptureError(msg) from exc

        record = CaptureRecord(
            timestamp=_from_ms(ts_ms),
            image_path=path,
            hash=digest,
            width=width,
            height=height,
        )
        logger.debug("Captured %s (%dx%d)", path.name, width, height)
        return record

    def _publish(self, tmp: Path, digest: str, ts_ms: int) -> tuple[Path, int]:
        """Hard-link *tmp* under its final name, bumping the timestamp on collision.

        ``os.link`` fails if the name exists, so concurrent writers never
        claim the same file.
        """
        prefix = digest[:HASH_PREFIX_LENGTH]
        while True:
            path = self._root / f"{prefix}_{ts_ms}{CAPTURE_SUFFIX}"
            try:
                os.link(tmp, path)
            except FileExistsError:
                ts_ms += 1
                continue
            return path, ts_ms

    # -- Read ------------------------------------------------------------------

    def _visible_files(self) -> list[tuple[float, Path]]:
        """(mtime, path) for every published capture, newest first.

        Files removed between listing and stat are left out.
        """
        if not self._root.is_dir():
            return []
        entries = []
        with os.scandir(self._root) as it:
            for entry in it:
                if entry.name.startswith(".") or not entry.name.endswith(CAPTURE_SUFFIX):
                    continue
                try:
                    if not entry.is_file():
                        continue
                    mtime = entry.stat().st_mtime
                except FileNotFoundError:
                    continue
                entries.append((mtime, self._root / entry.name))
        entries.sort(
            key=lambda item: (item[0], self._timestamp_for(item[1], item[0])), reverse=True
        )
        return entries

    @staticmethod
    def _timestamp_for(path: Path, mtime: float) -> datetime:
        match = _FILENAME_RE.match(path.name)
        if match:
            return _from_ms(int(match.group("ts")))
        return datetime.fromtimestamp(mtime, tz=UTC)

    def latest(self) -> CaptureRecord | None:
        """Return the most recently modified capture, or None.

        The hash is recomputed from the file and the dimensions are read
        from the PNG header.  A file evicted while being read is skipped.
        """
        for mtime, path in self._visible_files():
            try:
                data = path.read_bytes()
                with Image.open(io.BytesIO(data)) as image:
                    width, height = image.size
            except FileNotFoundError:
                logger.debug("Capture %s vanished before it could be read", path.name)
                continue
            except (OSError, Image.UnidentifiedImageError):
                logger.warning("Skipping unreadable capture %s", path.name)
                continue
            return CaptureRecord(
                timestamp=self._timestamp_for(path, mtime),
                image_path=path,
                hash=hashlib.sha256(data).hexdigest(),
                width=width,
                height=height,
            )
        return None

    def list_captures(self) -> list[dict]:
        """List published captures, newest first.

        Returns dicts with keys: name, path, size, timestamp_iso.
        """
        captures = []
        for mtime, path in self._visible_files():
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                continue
            captures.append(
                {
                    "name": path.name,
                    "path": str(path),
                    "size": size,
                    "timestamp_iso": self._timestamp_for(path, mtime).isoformat(),
                }
            )
        return captures

    # -- Eviction --------------------------------------------------------------

    def evict_older_than(self, max_age: timedelta) -> int:
        """Delete every file last modified at or before ``now - max_age``.

        Per-file failures are logged and skipped.  References held by stored
        messages are not consulted.  Returns the number of files removed.
        """
        if not self._root.is_dir():
            return 0

        cutoff = datetime.now(UTC).timestamp() - max_age.total_seconds()
        removed = 0
        with os.scandir(self._root) as it:
            for entry in it:
                try:
                    if not entry.is_file():
                        continue
                    if entry.stat().st_mtime > cutoff:
                        continue
                    os.unlink(entry.path)
                except FileNotFoundError:
                    continue
                except OSError:
                    logger.warning("Could not evict capture %s", entry.name, exc_info=True)
                    continue
                removed += 1
                logger.debug("Evicted capture %s", entry.name)

        if removed:
            logger.info("Capture sweep removed %d file(s)", removed)
        return removed
