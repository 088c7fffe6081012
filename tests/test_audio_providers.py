import numpy as np
import pytest
import soundfile as sf

from tonefield.services.audio_providers import ArrayFrameSource, WavFileFrameSource, to_mono

from audio_signals import SAMPLE_RATE, sine


class TestArrayFrameSource:
    def test_frame_count_and_hop(self):
        source = ArrayFrameSource(np.arange(10000, dtype=float), SAMPLE_RATE, 4096, 1024)
        frames = list(source.frames())
        # Trailing partial frame is dropped
        assert len(frames) == 6
        assert frames[1].samples[0] == 1024
        assert all(len(f.samples) == 4096 for f in frames)
        assert source.hop_size == 1024

    def test_hop_defaults_to_frame_size(self):
        source = ArrayFrameSource(np.zeros(8192), SAMPLE_RATE, frame_size=4096)
        assert source.hop_size == 4096
        assert len(list(source)) == 2

    def test_spectrum_attached(self):
        source = ArrayFrameSource(sine(440.0, n=4096), SAMPLE_RATE, with_spectrum=True)
        frame = next(iter(source))
        assert len(frame.spectrum_db) == 2048
        frame.validate()

    def test_gain_is_clipped(self):
        source = ArrayFrameSource(sine(440.0, n=4096), SAMPLE_RATE, gain=10.0)
        frame = next(iter(source))
        assert np.max(np.abs(frame.samples)) == pytest.approx(1.0)

    def test_stereo_is_averaged(self):
        stereo = np.column_stack([np.ones(4096), np.zeros(4096)])
        frame = next(iter(ArrayFrameSource(stereo, SAMPLE_RATE)))
        assert np.allclose(frame.samples, 0.5)

    def test_invalid_framing(self):
        with pytest.raises(ValueError):
            ArrayFrameSource(np.zeros(4096), SAMPLE_RATE, frame_size=1000)
        with pytest.raises(ValueError):
            ArrayFrameSource(np.zeros(4096), SAMPLE_RATE, hop_size=0)
        with pytest.raises(ValueError):
            ArrayFrameSource(np.zeros(4096), 0)


def test_to_mono_passes_mono_through():
    mono = np.arange(4.0)
    assert to_mono(mono) is mono


class TestWavFileFrameSource:
    def test_reads_frames(self, tmp_path):
        path = tmp_path / "tone.wav"
        signal = sine(440.0, n=SAMPLE_RATE // 2)
        sf.write(str(path), np.column_stack([signal, signal]), SAMPLE_RATE)

        source = WavFileFrameSource(str(path), frame_size=4096, hop_size=2048)
        assert source.sample_rate == SAMPLE_RATE
        assert source.channels == 2
        assert source.duration == pytest.approx(0.5)

        frames = list(source.frames())
        assert len(frames) == (len(signal) - 4096) // 2048 + 1
        np.testing.assert_allclose(frames[1].samples, signal[2048:6144], atol=1e-3)

    def test_file_shorter_than_frame(self, tmp_path):
        path = tmp_path / "short.wav"
        sf.write(str(path), np.zeros(1000), SAMPLE_RATE)
        assert list(WavFileFrameSource(str(path)).frames()) == []
