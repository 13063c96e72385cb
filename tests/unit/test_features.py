"""
Tests for voice feature extraction.
"""

import threading
import numpy as np
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))
from speakers.capture import ArraySpectrumSource, FrameSubscription, SpectrumSource
from speakers.features import (
    ExtractionConfig,
    FeatureExtractor,
    detect_pitch,
    spectral_centroid,
    summarize_frames,
    weighted_mean_bin,
)

SAMPLE_RATE = 16000
BINS = 1024  # fft_size 2048
HZ_PER_BIN = SAMPLE_RATE / (BINS * 2)  # 7.8125


def peak_frame(bin_index, height=200.0, floor=0.0):
    frame = np.full(BINS, floor)
    frame[bin_index] = height
    return frame


class ListSubscription(FrameSubscription):
    """Hands out a fixed list of frames, then reports closed."""

    def __init__(self, frames):
        self.sample_rate = SAMPLE_RATE
        self.fft_size = BINS * 2
        self._frames = list(frames)
        self.was_closed = False

    @property
    def closed(self):
        return not self._frames

    def next_frame(self, timeout=0.1):
        if self._frames:
            return self._frames.pop(0)
        return None

    def close(self):
        self.was_closed = True


class ListSource(SpectrumSource):
    sample_rate = SAMPLE_RATE
    fft_size = BINS * 2

    def __init__(self, frames):
        self.subscription = ListSubscription(frames)

    def subscribe(self):
        return self.subscription


class SilentSubscription(ListSubscription):
    """Never closes and never yields: a stalled device."""

    @property
    def closed(self):
        return False


class BrokenSource(SpectrumSource):
    sample_rate = SAMPLE_RATE
    fft_size = BINS * 2

    def subscribe(self):
        raise RuntimeError("device gone")


class TestFrameMeasures:
    """Per-frame pitch, frequency and centroid."""

    def test_detect_pitch_bin_to_hz(self):
        """Bin 20 of 1024 at 16kHz is 20 * 16000 / 2048 Hz."""
        assert detect_pitch(peak_frame(20), SAMPLE_RATE) == pytest.approx(156.25)

    def test_detect_pitch_low_quarter_only(self):
        """Peaks above the low quarter are ignored."""
        frame = peak_frame(20, height=100.0)
        frame[600] = 255.0
        assert detect_pitch(frame, SAMPLE_RATE) == pytest.approx(20 * HZ_PER_BIN)

    def test_detect_pitch_skips_dc(self):
        frame = peak_frame(15, height=100.0)
        frame[0] = 255.0
        assert detect_pitch(frame, SAMPLE_RATE) == pytest.approx(15 * HZ_PER_BIN)

    def test_detect_pitch_first_maximum_wins(self):
        frame = peak_frame(12)
        frame[30] = 200.0
        assert detect_pitch(frame, SAMPLE_RATE) == pytest.approx(12 * HZ_PER_BIN)

    def test_detect_pitch_silence(self):
        assert detect_pitch(np.zeros(BINS), SAMPLE_RATE) == 0.0

    def test_weighted_mean_bin(self):
        frame = np.zeros(8)
        frame[2] = 1.0
        frame[6] = 3.0
        assert weighted_mean_bin(frame) == pytest.approx(5.0)
        assert spectral_centroid(frame) == pytest.approx(5.0)

    def test_silent_frame_measures_zero(self):
        assert weighted_mean_bin(np.zeros(BINS)) == 0.0
        assert spectral_centroid(np.zeros(BINS)) == 0.0


class TestSummarizeFrames:
    """Aggregation across the sampling window."""

    def test_pitch_statistics(self):
        frames = [peak_frame(16), peak_frame(20), peak_frame(24)]
        fp = summarize_frames(frames, SAMPLE_RATE)
        assert fp.average_pitch == pytest.approx(20 * HZ_PER_BIN)
        assert fp.pitch_range == pytest.approx(8 * HZ_PER_BIN)

    def test_out_of_band_frames_excluded_from_pitch(self):
        """A 39 Hz and a 469 Hz frame are dropped, not clipped."""
        frames = [peak_frame(5), peak_frame(20), peak_frame(60)]
        fp = summarize_frames(frames, SAMPLE_RATE, 50.0, 400.0)
        assert fp.average_pitch == pytest.approx(20 * HZ_PER_BIN)
        assert fp.pitch_range == 0.0

    def test_frequency_averaged_over_all_frames(self):
        """Frequency and centroid include frames without a valid pitch."""
        frames = [peak_frame(20), np.zeros(BINS), peak_frame(5)]
        fp = summarize_frames(frames, SAMPLE_RATE)
        assert fp.average_frequency == pytest.approx((20 + 0 + 5) / 3)
        assert fp.spectral_centroid == pytest.approx((20 + 0 + 5) / 3)
        assert fp.average_pitch == pytest.approx(20 * HZ_PER_BIN)

    def test_no_voiced_frames(self):
        fp = summarize_frames([np.zeros(BINS), np.zeros(BINS)], SAMPLE_RATE)
        assert fp.is_zero()

    def test_no_frames(self):
        assert summarize_frames([], SAMPLE_RATE).is_zero()

    def test_deterministic(self):
        frames = [peak_frame(b, floor=3.0) for b in (14, 18, 22, 19)]
        assert summarize_frames(frames, SAMPLE_RATE) == summarize_frames(list(frames), SAMPLE_RATE)


class TestFeatureExtractor:
    """Sampling a source within the window."""

    def test_stops_at_max_frames(self):
        source = ListSource([peak_frame(20)] * 10 + [peak_frame(40)] * 10)
        extractor = FeatureExtractor(ExtractionConfig(max_frames=10))
        fp = extractor.extract(source)
        assert fp.average_pitch == pytest.approx(20 * HZ_PER_BIN)
        assert source.subscription.was_closed

    def test_source_runs_dry(self):
        source = ListSource([peak_frame(20), peak_frame(22)])
        fp = FeatureExtractor().extract(source)
        assert fp.average_pitch == pytest.approx(21 * HZ_PER_BIN)

    def test_closed_source_gives_zero(self):
        fp = FeatureExtractor().extract(ListSource([]))
        assert fp.is_zero()

    def test_no_source_gives_zero(self):
        assert FeatureExtractor().extract(None).is_zero()

    def test_failing_source_gives_zero(self):
        assert FeatureExtractor().extract(BrokenSource()).is_zero()

    def test_window_deadline(self):
        """A stalled source is abandoned when the window elapses."""
        source = ListSource([])
        source.subscription = SilentSubscription([])
        extractor = FeatureExtractor(ExtractionConfig(window_seconds=0.1), poll_interval=0.02)
        assert extractor.extract(source).is_zero()
        assert source.subscription.was_closed

    def test_cancelled(self):
        cancel = threading.Event()
        cancel.set()
        source = ListSource([peak_frame(20)] * 5)
        assert FeatureExtractor().extract(source, cancel).is_zero()
        assert source.subscription.was_closed


class TestExtractionConfig:

    def test_from_config(self, mock_config):
        config = ExtractionConfig.from_config(mock_config["extraction"])
        assert config.fft_size == 1024
        assert config.max_frames == 20
        assert config.voice_band_low == 60.0
        assert isinstance(config.voice_band_low, float)
        assert config.timeout_seconds == 0.5

    def test_defaults(self):
        config = ExtractionConfig.from_config({})
        assert config == ExtractionConfig()
        assert config.fft_size == 2048
        assert config.max_frames == 60


class TestSignalFingerprints:
    """End to end on synthetic tones."""

    def test_tone_pitch(self, tone):
        source = ArraySpectrumSource(tone(200.0), sample_rate=SAMPLE_RATE)
        fp = FeatureExtractor().extract(source)
        assert abs(fp.average_pitch - 200.0) < 25.0
        assert fp.average_frequency > 0
        assert fp.spectral_centroid > 0

    def test_higher_tone_higher_pitch(self, tone):
        low = FeatureExtractor().extract(ArraySpectrumSource(tone(120.0), sample_rate=SAMPLE_RATE))
        high = FeatureExtractor().extract(ArraySpectrumSource(tone(300.0), sample_rate=SAMPLE_RATE))
        assert high.average_pitch > low.average_pitch + 100

    def test_silence(self):
        source = ArraySpectrumSource(np.zeros(SAMPLE_RATE), sample_rate=SAMPLE_RATE)
        fp = FeatureExtractor().extract(source)
        assert fp.average_pitch == 0.0
        assert fp.pitch_range == 0.0
