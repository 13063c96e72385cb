"""
Voice feature extraction.

Samples a short window of analyser frames and reduces it to an
AcousticFingerprint: pitch statistics from the low quarter of the spectrum
plus two magnitude-weighted bin averages over the full spectrum.
"""

import threading
import time
import numpy as np
from dataclasses import dataclass
from typing import List, Optional, Sequence

from logger import log_debug, log_error
from utils import ConfigManager
from .capture import SpectrumSource
from .fingerprint import AcousticFingerprint


@dataclass(frozen=True)
class ExtractionConfig:
    """Sampling window and voice band for fingerprint extraction."""
    fft_size: int = 2048
    frame_rate: float = 60.0
    max_frames: int = 60
    window_seconds: float = 3.0
    voice_band_low: float = 50.0
    voice_band_high: float = 400.0
    timeout_seconds: float = 1.25
    smoothing: float = 0.8

    @classmethod
    def from_config(cls, section: Optional[dict] = None) -> "ExtractionConfig":
        """Build from the `extraction` config section, keeping defaults for missing keys."""
        if section is None:
            section = ConfigManager.get_config_section('extraction')
        defaults = cls()
        values = {}
        for name in defaults.__dataclass_fields__:
            value = section.get(name) if isinstance(section, dict) else None
            default = getattr(defaults, name)
            values[name] = type(default)(value) if value is not None else default
        return cls(**values)


def detect_pitch(frame: np.ndarray, sample_rate: int) -> float:
    """
    Dominant frequency (Hz) in the low quarter of a magnitude frame.

    Bin 0 (DC) is skipped; the first maximum wins. A silent frame gives 0.
    """
    frame = np.asarray(frame, dtype=np.float64)
    bins = len(frame)
    search = frame[1:bins // 4]
    if len(search) == 0 or search.max() <= 0:
        return 0.0
    index = int(np.argmax(search)) + 1
    return index * sample_rate / (bins * 2)


def weighted_mean_bin(frame: np.ndarray) -> float:
    """Magnitude-weighted mean bin index over the whole frame (0 for silence)."""
    frame = np.asarray(frame, dtype=np.float64)
    total = frame.sum()
    if total <= 0:
        return 0.0
    return float(np.dot(np.arange(len(frame)), frame) / total)


def spectral_centroid(frame: np.ndarray) -> float:
    """Brightness indicator: the spectrum's centre of mass in bins."""
    frame = np.asarray(frame, dtype=np.float64)
    denominator = frame.sum()
    if denominator <= 0:
        return 0.0
    numerator = np.dot(np.arange(len(frame)), frame)
    return float(numerator / denominator)


def in_voice_band(pitch: float, low: float, high: float) -> bool:
    return low < pitch < high


def summarize_frames(
    frames: Sequence[np.ndarray],
    sample_rate: int,
    voice_band_low: float = 50.0,
    voice_band_high: float = 400.0
) -> AcousticFingerprint:
    """
    Reduce sampled frames to one fingerprint.

    Pitch statistics use only frames whose pitch lies inside the voice band
    (out-of-band frames are dropped, not clipped). Frequency and centroid are
    averaged over every frame.
    """
    if not frames:
        return AcousticFingerprint.zero()

    pitches: List[float] = []
    frequency_sum = 0.0
    centroid_sum = 0.0
    for frame in frames:
        pitch = detect_pitch(frame, sample_rate)
        if in_voice_band(pitch, voice_band_low, voice_band_high):
            pitches.append(pitch)
        frequency_sum += weighted_mean_bin(frame)
        centroid_sum += spectral_centroid(frame)

    count = len(frames)
    return AcousticFingerprint(
        average_pitch=sum(pitches) / len(pitches) if pitches else 0.0,
        pitch_range=max(pitches) - min(pitches) if pitches else 0.0,
        average_frequency=frequency_sum / count,
        spectral_centroid=centroid_sum / count,
    )


class FeatureExtractor:
    """
    Samples a spectrum source for one utterance's fingerprint.

    Usage:
        extractor = FeatureExtractor(ExtractionConfig.from_config())
        fingerprint = extractor.extract(source, cancel_event)
    """

    def __init__(self, config: Optional[ExtractionConfig] = None, poll_interval: float = 0.05):
        self.config = config or ExtractionConfig()
        self._poll_interval = poll_interval

    def collect_frames(
        self,
        source: SpectrumSource,
        cancel_event: Optional[threading.Event] = None
    ) -> List[np.ndarray]:
        """Pull up to max_frames frames, stopping at the window deadline, cancellation or end of stream."""
        frames: List[np.ndarray] = []
        deadline = time.monotonic() + self.config.window_seconds

        with source.subscribe() as subscription:
            while len(frames) < self.config.max_frames:
                if cancel_event is not None and cancel_event.is_set():
                    log_debug(f"[Extractor] Cancelled after {len(frames)} frames")
                    break
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    log_debug(f"[Extractor] Window elapsed after {len(frames)} frames")
                    break
                frame = subscription.next_frame(timeout=min(remaining, self._poll_interval))
                if frame is None:
                    if subscription.closed:
                        break
                    continue
                frames.append(frame)

        return frames

    def extract(
        self,
        source: Optional[SpectrumSource],
        cancel_event: Optional[threading.Event] = None
    ) -> AcousticFingerprint:
        """
        Extract a fingerprint. Never raises: a missing or failing source gives
        the all-zero fingerprint so clustering still gets a well-formed value.
        """
        if source is None:
            log_debug("[Extractor] No audio source, returning zero fingerprint")
            return AcousticFingerprint.zero()

        try:
            frames = self.collect_frames(source, cancel_event)
        except Exception as e:
            log_error("[Extractor] Failed to sample audio source", e)
            return AcousticFingerprint.zero()

        if not frames:
            log_debug("[Extractor] No frames sampled, returning zero fingerprint")
            return AcousticFingerprint.zero()

        fingerprint = summarize_frames(
            frames,
            source.sample_rate,
            self.config.voice_band_low,
            self.config.voice_band_high
        )
        log_debug(f"[Extractor] {len(frames)} frames -> {fingerprint}")
        return fingerprint
