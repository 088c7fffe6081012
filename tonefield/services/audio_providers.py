from typing import Iterator, Optional

import numpy as np
import soundfile as sf

from ..audio.spectrum import compute_spectrum_db
from ..core.interfaces import IFrameSource
from ..logger import get_logger
from ..note_types import AudioFrame, is_power_of_two

logger = get_logger(__name__)


def to_mono(data: np.ndarray) -> np.ndarray:
    """Average the channels of a (frames, channels) array."""
    if data.ndim == 1:
        return data
    return data.mean(axis=1)


def _make_frame(
    block: np.ndarray, sample_rate: float, gain: float, spectrum_size: Optional[int]
) -> AudioFrame:
    if gain != 1.0:
        block = np.clip(block * gain, -1.0, 1.0)
    spectrum = compute_spectrum_db(block, spectrum_size) if spectrum_size else None
    return AudioFrame(samples=block, sample_rate=sample_rate, spectrum_db=spectrum)


def _check_framing(frame_size: int, hop_size: Optional[int]) -> int:
    if not is_power_of_two(frame_size):
        raise ValueError(f"Frame size must be a power of two, got {frame_size}")
    hop = frame_size if hop_size is None else int(hop_size)
    if hop <= 0:
        raise ValueError(f"Hop size must be positive, got {hop_size}")
    return hop


class ArrayFrameSource(IFrameSource):
    """Cuts an in-memory signal into fixed-size, possibly overlapping frames."""

    def __init__(
        self,
        samples: np.ndarray,
        sample_rate: float,
        frame_size: int = 4096,
        hop_size: Optional[int] = None,
        gain: float = 1.0,
        with_spectrum: bool = False,
    ):
        self._hop_size = _check_framing(frame_size, hop_size)
        if not sample_rate or sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {sample_rate}")
        self._samples = to_mono(np.asarray(samples, dtype=np.float64))
        self._sample_rate = float(sample_rate)
        self._frame_size = frame_size
        self._gain = gain
        self._with_spectrum = with_spectrum

    @property
    def sample_rate(self) -> float:
        return self._sample_rate

    @property
    def hop_size(self) -> int:
        return self._hop_size

    @property
    def frame_size(self) -> int:
        return self._frame_size

    def frames(self) -> Iterator[AudioFrame]:
        """Yield every complete frame; a trailing partial frame is dropped."""
        last_start = len(self._samples) - self._frame_size
        for start in range(0, last_start + 1, self._hop_size):
            yield _make_frame(
                self._samples[start : start + self._frame_size].copy(),
                self._sample_rate,
                self._gain,
                self._frame_size if self._with_spectrum else None,
            )

    def __iter__(self) -> Iterator[AudioFrame]:
        return self.frames()


class WavFileFrameSource(IFrameSource):
    """Provides analysis frames by reading from a WAV file."""

    def __init__(
        self,
        file_path: str,
        frame_size: int = 4096,
        hop_size: Optional[int] = None,
        gain: float = 1.0,
        with_spectrum: bool = False,
    ):
        self._hop_size = _check_framing(frame_size, hop_size)
        self._file_path = file_path
        self._frame_size = frame_size
        self._gain = gain
        self._with_spectrum = with_spectrum

        with sf.SoundFile(self._file_path) as f:
            self._sample_rate = f.samplerate
            self._channels = f.channels
            self._num_frames = f.frames

        logger.debug(
            f"Opened {file_path}: {self._sample_rate} Hz, {self._channels} channel(s), "
            f"{self._num_frames} samples"
        )

    @property
    def sample_rate(self) -> float:
        return float(self._sample_rate)

    @property
    def channels(self) -> int:
        return self._channels

    @property
    def hop_size(self) -> int:
        return self._hop_size

    @property
    def frame_size(self) -> int:
        return self._frame_size

    @property
    def duration(self) -> float:
        """Length of the file in seconds."""
        return self._num_frames / self._sample_rate

    def frames(self) -> Iterator[AudioFrame]:
        """Yield mono frames of frame_size samples, hop_size apart."""
        with sf.SoundFile(self._file_path) as f:
            start = 0
            while start + self._frame_size <= self._num_frames:
                f.seek(start)
                block = f.read(self._frame_size, dtype="float64", always_2d=True)
                if len(block) < self._frame_size:
                    break
                yield _make_frame(
                    to_mono(block),
                    float(self._sample_rate),
                    self._gain,
                    self._frame_size if self._with_spectrum else None,
                )
                start += self._hop_size

    def __iter__(self) -> Iterator[AudioFrame]:
        return self.frames()
