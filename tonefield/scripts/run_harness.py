"""Replay recorded notes through an analysis pipeline and check the result.

Each test case is a ``<name>.wav`` file with a ``<name>.json`` sidecar
holding ``{"expected_note": "D4"}``. A case passes when the most common note
reported by the pipeline matches the expected name.
"""

import json
import os
import sys
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

import click

from ..core.config import ConfigManager
from ..core.factory import ComponentFactory
from ..logger import get_logger
from ..logging_config import setup_logging
from ..note_types import FrameAnalysis
from ..services.analysis_service import run_pipeline
from ..services.audio_providers import WavFileFrameSource

logger = get_logger(__name__)


def find_test_files(recordings_path: str) -> List[Tuple[str, str]]:
    """Find all corresponding .wav and .json files in the recordings path."""
    pairs = []
    for filename in sorted(os.listdir(recordings_path)):
        if filename.endswith(".wav"):
            wav_path = os.path.join(recordings_path, filename)
            json_path = os.path.splitext(wav_path)[0] + ".json"
            if os.path.exists(json_path):
                pairs.append((wav_path, json_path))
    return pairs


def reported_note(analysis: FrameAnalysis, mode: str) -> Optional[str]:
    if mode == "identify":
        return analysis.identified_note
    if analysis.note is None:
        return None
    return analysis.note.full_name


class TestHarness:
    """Validates a pipeline against pre-recorded samples."""

    __test__ = False

    def __init__(
        self,
        recordings_path: str,
        mode: str = "quick",
        frame_size: int = 4096,
        hop_size: int = 1024,
        gain: float = 1.0,
        factory: Optional[ComponentFactory] = None,
    ):
        self.recordings_path = recordings_path
        self.mode = mode
        self.frame_size = frame_size
        self.hop_size = hop_size
        self.gain = gain
        self.factory = factory or ComponentFactory(ConfigManager(persist=False))
        self.test_files = find_test_files(recordings_path)
        if not self.test_files:
            logger.warning(f"No test files (.wav/.json pairs) found in {recordings_path}")

    def run_single(self, wav_path: str, json_path: str) -> Dict[str, Any]:
        """Run a single test case against one WAV file."""
        with open(json_path, "r") as f:
            ground_truth = json.load(f)
        expected_note = ground_truth["expected_note"]

        source = WavFileFrameSource(
            wav_path, frame_size=self.frame_size, hop_size=self.hop_size, gain=self.gain
        )
        pipeline = self.factory.create_pipeline(self.mode)
        logger.debug(
            f"Replaying {os.path.basename(wav_path)} at {source.sample_rate:.0f} Hz "
            f"({source.duration:.2f} s)"
        )

        detected: List[str] = []
        for analysis in run_pipeline(pipeline, source.frames()):
            name = reported_note(analysis, self.mode)
            if name:
                detected.append(name)

        most_common = Counter(detected).most_common(1)[0][0] if detected else None
        return {
            "passed": most_common == expected_note,
            "expected": expected_note,
            "detected_notes": detected,
            "most_common": most_common,
        }

    def run(self) -> bool:
        """Run all tests and print a summary report."""
        click.echo(f"Found {len(self.test_files)} test cases.")
        passed_count = 0

        for wav_path, json_path in self.test_files:
            result = self.run_single(wav_path, json_path)
            if result["passed"]:
                passed_count += 1
            status = "PASS" if result["passed"] else "FAIL"
            click.echo(
                f"- Test: {os.path.basename(wav_path):<15} | Status: {status:<4} | "
                f"Expected: {result['expected']:<4} | Got: {result['most_common'] or 'None'}"
            )

        click.echo("\n--- Test Summary ---")
        click.echo(f"{passed_count} / {len(self.test_files)} tests passed.")
        return passed_count == len(self.test_files)


@click.command()
@click.argument(
    "recordings_path",
    type=click.Path(exists=True, file_okay=False),
    default="recordings",
)
@click.option(
    "--mode",
    type=click.Choice(["quick", "identify"]),
    default="quick",
    help="Pipeline to replay the recordings through",
)
@click.option("--frame-size", default=4096, help="Samples per analysis frame")
@click.option("--hop-size", default=1024, help="Samples between frames")
@click.option("--gain", default=1.0, help="Gain applied to the recorded samples")
@click.option("--log-level", default=None, help="Override tonefield log levels, e.g. DEBUG")
def main(recordings_path, mode, frame_size, hop_size, gain, log_level):
    """Replay .wav/.json test cases and report pass/fail per file"""
    setup_logging(log_level)
    harness = TestHarness(
        recordings_path,
        mode=mode,
        frame_size=frame_size,
        hop_size=hop_size,
        gain=gain,
    )
    if not harness.run():
        sys.exit(1)


if __name__ == "__main__":
    main()
