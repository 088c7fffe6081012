import json

import pytest
import soundfile as sf
from click.testing import CliRunner

from tonefield.scripts.run_harness import TestHarness, find_test_files, main

from audio_signals import SAMPLE_RATE, harmonic_signal


@pytest.fixture
def recordings(tmp_path):
    sf.write(str(tmp_path / "d3.wav"), harmonic_signal(146.83, n=SAMPLE_RATE), SAMPLE_RATE)
    (tmp_path / "d3.json").write_text(json.dumps({"expected_note": "D3"}))
    # A wav without a sidecar is not a test case
    sf.write(str(tmp_path / "stray.wav"), harmonic_signal(220.0, n=8192), SAMPLE_RATE)
    return tmp_path


def test_find_test_files(recordings):
    pairs = find_test_files(str(recordings))
    assert [p[0].rsplit("/", 1)[-1] for p in pairs] == ["d3.wav"]


def test_single_case_passes(recordings):
    harness = TestHarness(str(recordings))
    wav_path, json_path = harness.test_files[0]
    result = harness.run_single(wav_path, json_path)
    assert result["passed"]
    assert result["most_common"] == "D3"


def test_wrong_expectation_fails(recordings):
    (recordings / "d3.json").write_text(json.dumps({"expected_note": "E3"}))
    assert not TestHarness(str(recordings)).run()


def test_cli(recordings):
    result = CliRunner().invoke(main, [str(recordings), "--hop-size", "2048"])
    assert result.exit_code == 0, result.output
    assert "1 / 1 tests passed." in result.output
