"""PCM gain stage with a runtime-mutable gain factor."""

from __future__ import annotations

import numpy as np

from aiobookcast.models.types import SampleFormat

MIN_GAIN = 0.0
MAX_GAIN = 1.5
UNITY_GAIN = 1.0

_S16_MIN = -32768
_S16_MAX = 32767


def clamp_gain(value: float) -> float:
    """Clamp a gain factor to the supported range (0.0 - 1.5)."""
    return max(MIN_GAIN, min(MAX_GAIN, float(value)))


class GainStage:
    """
    Multiply every PCM sample by a gain factor.

    Expects signed 16-bit PCM. The gain can be changed at any time with
    set_gain() and applies from the next sample processed; there is no
    lookahead or smoothing. The number of bytes that come out always equals
    the number of bytes that went in, since the downstream encoder depends on
    exact frame alignment.

    A sample split across two chunks is held back until its second byte
    arrives; flush() releases a dangling byte at end of stream.
    """

    def __init__(
        self,
        initial_gain: float = UNITY_GAIN,
        sample_format: SampleFormat = SampleFormat.S16LE,
    ) -> None:
        """
        Initialize the gain stage.

        Args:
            initial_gain: Starting gain (0.0 = silent, 1.0 = unity, 1.5 = max).
            sample_format: Byte order of the 16-bit samples.
        """
        self._gain = clamp_gain(initial_gain)
        self._sample_format = sample_format
        self._dtype = np.dtype(sample_format.numpy_dtype)
        self._remainder = b""

    @property
    def gain(self) -> float:
        """Current gain factor."""
        return self._gain

    @property
    def sample_format(self) -> SampleFormat:
        """Sample format this stage was created for."""
        return self._sample_format

    def set_gain(self, value: float) -> None:
        """Set the gain factor, clamped to 0.0 - 1.5."""
        self._gain = clamp_gain(value)

    def process(self, chunk: bytes) -> bytes:
        """Apply the current gain to a chunk of PCM bytes."""
        if self._remainder:
            chunk = self._remainder + chunk
            self._remainder = b""
        width = self._sample_format.sample_width
        if len(chunk) % width:
            self._remainder = chunk[-1:]
            chunk = chunk[:-1]
        if not chunk:
            return b""

        gain = self._gain
        if gain == UNITY_GAIN:
            return bytes(chunk)
        if gain == MIN_GAIN:
            return bytes(len(chunk))

        samples = np.frombuffer(chunk, dtype=self._dtype).astype(np.float64)
        # Round half up
        scaled = np.floor(samples * gain + 0.5)
        np.clip(scaled, _S16_MIN, _S16_MAX, out=scaled)
        return scaled.astype(self._dtype).tobytes()

    def flush(self) -> bytes:
        """Return any held-back partial sample unchanged."""
        remainder, self._remainder = self._remainder, b""
        return remainder
