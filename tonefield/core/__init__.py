"""Core components for the tonefield package."""

# Import interfaces for easier access
from .interfaces import (
    IPitchEstimator,
    IFrameSource,
    IFramePipeline,
)

__all__ = ["IPitchEstimator", "IFrameSource", "IFramePipeline"]
