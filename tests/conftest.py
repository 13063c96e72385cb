"""
Pytest fixtures for Murmur tests.
"""

import sys
import tempfile
from pathlib import Path

import numpy as np
import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from speakers.fingerprint import AcousticFingerprint  # noqa: E402


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_fingerprint():
    """Factory for fingerprints with the scenario's neutral defaults."""
    def _make(pitch=120.0, pitch_range=20.0, frequency=300.0, centroid=150.0):
        return AcousticFingerprint(
            average_pitch=pitch,
            pitch_range=pitch_range,
            average_frequency=frequency,
            spectral_centroid=centroid
        )
    return _make


@pytest.fixture
def tone():
    """Factory for a sine wave (float, -1..1)."""
    def _tone(frequency, seconds=1.5, sample_rate=16000, amplitude=0.05):
        t = np.arange(int(seconds * sample_rate)) / sample_rate
        return amplitude * np.sin(2 * np.pi * frequency * t)
    return _tone


@pytest.fixture
def mock_config():
    """Mock configuration for testing."""
    return {
        "clustering": {
            "expected_speakers": 3,
            "similarity_threshold": 0.35,
            "pitch_scale": 150,
            "range_scale": 80,
            "frequency_scale": 800,
            "spectral_scale": 400,
            "pitch_weight": 0.6,
            "range_weight": 0.2,
            "frequency_weight": 0.15,
            "spectral_weight": 0.05
        },
        "extraction": {
            "fft_size": 1024,
            "frame_rate": 30,
            "max_frames": 20,
            "window_seconds": 2.0,
            "voice_band_low": 60,
            "voice_band_high": 350,
            "timeout_seconds": 0.5,
            "smoothing": 0.5
        },
        "misc": {
            "print_to_terminal": False,
            "log_level": "ERROR"
        }
    }
