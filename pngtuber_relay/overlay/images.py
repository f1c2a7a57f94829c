"""
overlay/images.py — Avatar image slots (idle / talk).

Uploads arrive as a raw image body; the file is stored as <slot>.<ext> in
the images directory (served at /images) and the caller records the filename
in the config record under "<slot>Image".
"""

from __future__ import annotations

import logging
from pathlib import Path

log = logging.getLogger(__name__)

SLOTS = ("idle", "talk")
MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class InvalidSlotError(ValueError):
    pass


class AssetTooLargeError(ValueError):
    pass


def extension_for(content_type: str) -> str:
    content_type = (content_type or "").lower()
    if "gif" in content_type:
        return "gif"
    if "webp" in content_type:
        return "webp"
    return "png"


class ImageStore:
    def __init__(self, images_dir: Path, max_bytes: int = MAX_UPLOAD_BYTES):
        self.images_dir = Path(images_dir)
        self.max_bytes = max_bytes

    def ensure_dir(self) -> Path:
        self.images_dir.mkdir(parents=True, exist_ok=True)
        return self.images_dir

    @staticmethod
    def check_slot(slot: str) -> None:
        if slot not in SLOTS:
            raise InvalidSlotError(f"Invalid image slot '{slot}' (expected one of: {', '.join(SLOTS)})")

    def too_large_message(self) -> str:
        if self.max_bytes >= 1024 * 1024:
            return f"Image exceeds {self.max_bytes // (1024 * 1024)} MB limit"
        return f"Image exceeds {self.max_bytes} byte limit"

    def save(self, slot: str, content_type: str, data: bytes) -> str:
        """Write the image for `slot`, returning the stored filename."""
        self.check_slot(slot)
        if len(data) > self.max_bytes:
            raise AssetTooLargeError(self.too_large_message())

        filename = f"{slot}.{extension_for(content_type)}"
        (self.ensure_dir() / filename).write_bytes(data)
        log.info(f"Stored {slot} image → {filename} ({len(data)} bytes)")
        return filename

    @staticmethod
    def config_key(slot: str) -> str:
        return f"{slot}Image"
