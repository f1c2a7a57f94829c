"""
overlay/audio.py — OBS volume meters → avatar mouth.

OBS emits InputVolumeMeters roughly every 50ms with per-channel
[magnitude, peak, input_peak] multipliers for every input. We pick the
configured input, take the loudest first value across its channels and
push it to the overlays as a 0–100 volume. No smoothing: the overlay
applies threshold + closeDelay itself.
"""

from __future__ import annotations

import logging
from numbers import Real
from typing import Any, Optional

log = logging.getLogger(__name__)


def _level(channel: Any) -> float:
    value = channel[0]
    if isinstance(value, bool) or not isinstance(value, Real):
        return 0.0
    return float(value)


def reduce_volume(inputs: Any, input_name: str) -> Optional[float]:
    """
    Reduce one InputVolumeMeters sample to a single 0–100 value for `input_name`.
    Returns None when the input is absent or reports no channel levels.

        >>> reduce_volume([{"inputName": "Mic", "inputLevelsMul": [[0.5], [0.9], []]}], "Mic")
        90.0
    """
    if not isinstance(inputs, list):
        return None
    entry = next(
        (i for i in inputs if isinstance(i, dict) and i.get("inputName") == input_name),
        None,
    )
    if entry is None:
        return None
    channels = entry.get("inputLevelsMul")
    if not isinstance(channels, list) or not channels:
        return None

    peak = 0.0
    for channel in channels:
        if isinstance(channel, list) and channel:
            peak = max(peak, _level(channel))
    return max(0.0, min(100.0, peak * 100))


class AudioLevelPipeline:
    def __init__(self, config_store: Any, hub: Any):
        self._config = config_store
        self._hub = hub

    async def handle(self, data: dict) -> Optional[float]:
        input_name = self._config.get().get("obsInputName")
        if not input_name or not data.get("inputs"):
            return None
        volume = reduce_volume(data["inputs"], input_name)
        if volume is None:
            return None
        await self._hub.broadcast({"type": "audio", "volume": volume})
        return volume
