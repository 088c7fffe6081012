"""Defines the core interfaces for the tonefield package."""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Iterator, Optional

import numpy as np

from ..note_types import AudioFrame, FrameAnalysis, PitchEstimate


class IPitchEstimator(ABC):
    """Interface for time-domain fundamental estimators."""

    @abstractmethod
    def estimate(
        self,
        samples: np.ndarray,
        sample_rate: float,
        min_rms: Optional[float] = None,
    ) -> PitchEstimate:
        """Estimate the fundamental of one frame."""
        pass


class IFrameSource(ABC):
    """Interface for anything that yields analysis frames."""

    @property
    @abstractmethod
    def sample_rate(self) -> float:
        """Sample rate of the frames in Hz."""
        pass

    @property
    @abstractmethod
    def hop_size(self) -> int:
        """Samples between the starts of consecutive frames."""
        pass

    @abstractmethod
    def frames(self) -> Iterator[AudioFrame]:
        """Yield frames in order."""
        pass


class IFramePipeline(ABC):
    """Interface for per-frame analysis pipelines."""

    @abstractmethod
    def process(self, frame: AudioFrame) -> FrameAnalysis:
        """Analyse one frame."""
        pass

    @abstractmethod
    def reset(self) -> None:
        """Discard any state carried between frames."""
        pass
