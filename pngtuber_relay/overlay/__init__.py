"""overlay — avatar state driven into the browser overlay and OBS."""
from .audio import AudioLevelPipeline, reduce_volume
from .images import AssetTooLargeError, ImageStore, InvalidSlotError
from .visibility import VisibilityController

__all__ = [
    "AudioLevelPipeline",
    "reduce_volume",
    "AssetTooLargeError",
    "ImageStore",
    "InvalidSlotError",
    "VisibilityController",
]
