"""Factory for creating tonefield components."""

from typing import Any, Dict, Optional, Type

from ..logger import get_logger
from ..audio.harmonic_analyzer import HarmonicAnalyzer
from ..audio.pitch_detector import YinPitchEstimator
from ..audio.spectral_matcher import SpectralMatcher
from ..detection.pitch_class_stabilizer import PitchClassStabilizer
from ..detection.stability_analyzer import (
    MeasurementSession,
    PartialTargets,
    PartialTolerances,
    PartialWindows,
    StabilityTracker,
)
from ..services.analysis_service import (
    NoteIdentificationPipeline,
    QuickTuningPipeline,
    StrobePipeline,
)
from .config import ConfigManager
from .events import StabilityEvents, ThrottledEmitter
from .interfaces import IFramePipeline, IPitchEstimator

logger = get_logger(__name__)


def _pick(config: Dict[str, Any], *keys: str) -> Dict[str, Any]:
    return {key: config[key] for key in keys if key in config}


class ComponentFactory:
    """Factory for creating tonefield components from stored configuration."""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        """Initialize the component factory.

        Args:
            config_manager: Configuration manager, or None to create a default one
        """
        self.config_manager = config_manager or ConfigManager()

        # Register default component implementations
        self.pitch_estimator_classes: Dict[str, Type[IPitchEstimator]] = {
            "default": YinPitchEstimator,
            "yin": YinPitchEstimator,
        }

        self.pipeline_classes: Dict[str, Type[IFramePipeline]] = {
            "quick": QuickTuningPipeline,
            "identify": NoteIdentificationPipeline,
            "strobe": StrobePipeline,
        }

    def create_pitch_estimator(
        self, implementation: str = "default", **kwargs
    ) -> IPitchEstimator:
        """Create a pitch estimator.

        Args:
            implementation: Name of the implementation to use
            **kwargs: Additional parameters to pass to the constructor

        Returns:
            Pitch estimator instance

        Raises:
            ValueError: If the implementation is not registered
        """
        if implementation not in self.pitch_estimator_classes:
            raise ValueError(f"Unknown pitch estimator implementation: {implementation}")

        config = _pick(
            self.config_manager.get_config("pitch_detector"),
            "yin_threshold",
            "min_frequency",
            "max_frequency",
        )
        config["min_rms"] = self.config_manager.get("pitch_detector", "rms_onset")
        config.update(kwargs)

        cls = self.pitch_estimator_classes[implementation]
        instance = cls(**config)

        logger.info(f"Created pitch estimator: {implementation}")
        return instance

    def create_harmonic_analyzer(self, **kwargs) -> HarmonicAnalyzer:
        config = self.config_manager.get_config("harmonic_analyzer")
        config.update(kwargs)
        return HarmonicAnalyzer(**config)

    def create_spectral_matcher(self, **kwargs) -> SpectralMatcher:
        config = self.config_manager.get_config("spectral_matcher")
        config.update(kwargs)
        return SpectralMatcher(**config)

    def create_stability_tracker(self, **kwargs) -> StabilityTracker:
        config = self.config_manager.get_config("stability")
        config.update(kwargs)
        tolerances = PartialTolerances(
            fundamental=config["fundamental_tolerance_cents"],
            octave=config["octave_tolerance_cents"],
            compound_fifth=config["compound_fifth_tolerance_cents"],
        )
        return StabilityTracker(
            ema_alpha=config["ema_alpha"],
            null_grace_frames=config["null_grace_frames"],
            stable_frame_threshold=config["stable_frame_threshold"],
            tolerances=tolerances,
        )

    def create_session(
        self,
        fundamental: float,
        octave: Optional[float] = None,
        compound_fifth: Optional[float] = None,
        events: Optional[StabilityEvents] = None,
    ) -> MeasurementSession:
        """Create a measurement session for one target note.

        Args:
            fundamental: Target fundamental in Hz
            octave: Target octave in Hz, 2x the fundamental if None
            compound_fifth: Target compound fifth in Hz, 3x the fundamental if None
            events: If given, session updates are published to it through a
                ThrottledEmitter

        Returns:
            MeasurementSession instance
        """
        precision = self.config_manager.get_config("precision_detector")
        windows = PartialWindows(
            fundamental=precision["fundamental_window_cents"],
            octave=precision["octave_window_cents"],
            compound_fifth=precision["compound_fifth_window_cents"],
        )

        emitter = None
        if events is not None:
            emitter = ThrottledEmitter(
                events, interval_s=self.config_manager.get("stability", "emit_interval_s", 0.05)
            )

        session = MeasurementSession(
            PartialTargets.for_fundamental(fundamental, octave, compound_fifth),
            tracker=self.create_stability_tracker(),
            windows=windows,
            fft_size=precision["fft_size"],
            noise_floor_rms=precision["noise_floor_rms"],
            noise_floor_db=precision["noise_floor_db"],
            use_phase=precision["use_phase"],
            emitter=emitter,
        )
        logger.info(f"Created measurement session for {fundamental:.2f} Hz")
        return session

    def create_pipeline(self, implementation: str = "quick", **kwargs) -> IFramePipeline:
        """Create a frame pipeline.

        Args:
            implementation: One of "quick", "identify" or "strobe"
            **kwargs: For "strobe", the target (``fundamental`` and optionally
                ``octave``, ``compound_fifth``, ``events``, ``hop_size``);
                otherwise overrides passed to the pipeline constructor

        Returns:
            Frame pipeline instance

        Raises:
            ValueError: If the implementation is not registered, or a strobe
                pipeline is requested without a target
        """
        if implementation not in self.pipeline_classes:
            raise ValueError(f"Unknown pipeline implementation: {implementation}")

        cls = self.pipeline_classes[implementation]
        if implementation == "quick":
            kwargs.setdefault("estimator", self.create_pitch_estimator())
            kwargs.setdefault("analyzer", self.create_harmonic_analyzer())
            kwargs.setdefault(
                "rms_onset", self.config_manager.get("pitch_detector", "rms_onset")
            )
            kwargs.setdefault(
                "rms_sustain", self.config_manager.get("pitch_detector", "rms_sustain")
            )
            instance = cls(**kwargs)
        elif implementation == "identify":
            kwargs.setdefault("matcher", self.create_spectral_matcher())
            kwargs.setdefault(
                "stabilizer",
                PitchClassStabilizer(
                    self.config_manager.get("identify", "stable_frames_required")
                ),
            )
            kwargs.setdefault("rms_floor", self.config_manager.get("identify", "rms_floor"))
            instance = cls(**kwargs)
        else:
            if "fundamental" not in kwargs:
                raise ValueError("A strobe pipeline needs a target fundamental")
            hop_size = kwargs.pop("hop_size", None)
            session = self.create_session(**kwargs)
            instance = cls(session, hop_size=hop_size)

        logger.info(f"Created pipeline: {implementation}")
        return instance
