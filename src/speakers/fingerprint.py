"""
Acoustic fingerprint: the four-number voice summary of one utterance.
"""

import math
from dataclasses import dataclass, asdict
from typing import Iterable, Optional

from utils import ConfigManager


# Accepted spellings when reading fingerprints from dicts (snake_case, camelCase, legacy short keys)
_FIELD_ALIASES = {
    "average_pitch": ("average_pitch", "averagePitch", "avgPitch"),
    "pitch_range": ("pitch_range", "pitchRange"),
    "average_frequency": ("average_frequency", "averageFrequency", "avgFrequency"),
    "spectral_centroid": ("spectral_centroid", "spectralCentroid"),
}


@dataclass(frozen=True)
class AcousticFingerprint:
    """Pitch statistics plus a coarse spectral summary for one utterance."""
    average_pitch: float = 0.0      # Hz, 0 if no voiced frame was found
    pitch_range: float = 0.0        # Hz, max - min of per-frame pitch
    average_frequency: float = 0.0  # Magnitude-weighted mean bin index
    spectral_centroid: float = 0.0  # Magnitude-weighted mean bin index (brightness)

    @classmethod
    def zero(cls) -> "AcousticFingerprint":
        """The degenerate fingerprint used when no audio could be sampled."""
        return cls()

    @classmethod
    def mean(cls, fingerprints: Iterable["AcousticFingerprint"]) -> "AcousticFingerprint":
        """Per-field arithmetic mean. Empty input gives the zero fingerprint."""
        samples = list(fingerprints)
        if not samples:
            return cls.zero()
        count = len(samples)
        return cls(
            average_pitch=sum(s.average_pitch for s in samples) / count,
            pitch_range=sum(s.pitch_range for s in samples) / count,
            average_frequency=sum(s.average_frequency for s in samples) / count,
            spectral_centroid=sum(s.spectral_centroid for s in samples) / count,
        )

    def is_zero(self) -> bool:
        return not any((self.average_pitch, self.pitch_range,
                        self.average_frequency, self.spectral_centroid))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AcousticFingerprint":
        """Create from dictionary. Missing fields default to 0."""
        values = {}
        for field_name, aliases in _FIELD_ALIASES.items():
            for key in aliases:
                if key in data and data[key] is not None:
                    values[field_name] = float(data[key])
                    break
        return cls(**values)


@dataclass(frozen=True)
class DistanceWeights:
    """
    Scale and weight constants for the speaker distance.

    The defaults were tuned by trial and error. Treat them as configuration,
    not physical constants.
    """
    pitch_scale: float = 150.0
    range_scale: float = 80.0
    frequency_scale: float = 800.0
    spectral_scale: float = 400.0
    pitch_weight: float = 0.6
    range_weight: float = 0.2
    frequency_weight: float = 0.15
    spectral_weight: float = 0.05

    @classmethod
    def from_config(cls, section: Optional[dict] = None) -> "DistanceWeights":
        """Build from the `clustering` config section, keeping defaults for missing keys."""
        if section is None:
            section = ConfigManager.get_config_section('clustering')
        defaults = cls()
        values = {}
        for name in asdict(defaults):
            value = section.get(name) if isinstance(section, dict) else None
            values[name] = float(value) if value is not None else getattr(defaults, name)
        return cls(**values)


DEFAULT_WEIGHTS = DistanceWeights()


def fingerprint_distance(
    a: AcousticFingerprint,
    b: AcousticFingerprint,
    weights: DistanceWeights = DEFAULT_WEIGHTS
) -> float:
    """
    Weighted Euclidean distance over normalized per-field differences.

    Pitch dominates: it is the cheapest reliable cue for coarse voice
    separation. The other three terms split speakers of similar pitch.
    """
    pitch_diff = abs(a.average_pitch - b.average_pitch) / weights.pitch_scale
    range_diff = abs(a.pitch_range - b.pitch_range) / weights.range_scale
    freq_diff = abs(a.average_frequency - b.average_frequency) / weights.frequency_scale
    spectral_diff = abs(a.spectral_centroid - b.spectral_centroid) / weights.spectral_scale

    return math.sqrt(
        (weights.pitch_weight * pitch_diff) ** 2 +
        (weights.range_weight * range_diff) ** 2 +
        (weights.frequency_weight * freq_diff) ** 2 +
        (weights.spectral_weight * spectral_diff) ** 2
    )
