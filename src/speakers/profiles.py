"""
Enrolled voice profiles.

Matches a fingerprint against named voice samples recorded up front. Profiles
live in memory for the current session only.
"""

import threading
import uuid
from dataclasses import dataclass
from typing import List, NamedTuple, Optional

from logger import log_debug
from utils import ConfigManager
from .clustering import UNKNOWN_SPEAKER
from .fingerprint import AcousticFingerprint

# (scale, weight) per field; similarity per field is 1 - min(|diff| / scale, 1)
SIMILARITY_TERMS = {
    "average_pitch": (150.0, 0.45),
    "pitch_range": (80.0, 0.25),
    "average_frequency": (800.0, 0.20),
    "spectral_centroid": (400.0, 0.10),
}


@dataclass(frozen=True)
class VoiceProfile:
    """A named speaker with a reference fingerprint."""
    id: str
    name: str
    fingerprint: AcousticFingerprint

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "voice_pattern": self.fingerprint.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> "VoiceProfile":
        pattern = data.get("voice_pattern") or data.get("voicePattern") or {}
        return cls(
            id=str(data.get("id") or uuid.uuid4().hex),
            name=data["name"],
            fingerprint=AcousticFingerprint.from_dict(pattern),
        )


class ProfileMatch(NamedTuple):
    name: str
    confidence: float
    id: Optional[str]


def profile_similarity(a: AcousticFingerprint, b: AcousticFingerprint) -> float:
    """Weighted per-field similarity in 0..1 (1 = identical)."""
    similarity = 0.0
    for field_name, (scale, weight) in SIMILARITY_TERMS.items():
        diff = abs(getattr(a, field_name) - getattr(b, field_name))
        similarity += (1.0 - min(diff / scale, 1.0)) * weight
    return max(0.0, min(1.0, similarity))


class ProfileMatcher:
    """
    Identifies enrolled speakers.

    Usage:
        matcher = ProfileMatcher()
        matcher.add_profile("Alice", fingerprint)
        name, confidence, profile_id = matcher.identify(other_fingerprint)
    """

    def __init__(self, match_threshold: Optional[float] = None):
        if match_threshold is None:
            match_threshold = ConfigManager.get_config_value('profiles', 'match_threshold')
        self.match_threshold = float(match_threshold) if match_threshold is not None else 0.5
        self._profiles: List[VoiceProfile] = []
        self._lock = threading.Lock()

    @property
    def profiles(self) -> List[VoiceProfile]:
        with self._lock:
            return list(self._profiles)

    def has_profiles(self) -> bool:
        with self._lock:
            return bool(self._profiles)

    def update_profiles(self, profiles: List[VoiceProfile]):
        """Replace every profile."""
        with self._lock:
            self._profiles = list(profiles)
        log_debug(f"[Profiles] Profiles updated, total count: {len(profiles)}")

    def add_profile(self, name: str, fingerprint: AcousticFingerprint) -> VoiceProfile:
        profile = VoiceProfile(id=uuid.uuid4().hex, name=name, fingerprint=fingerprint)
        with self._lock:
            self._profiles.append(profile)
        log_debug(f"[Profiles] Enrolled {name} ({fingerprint.average_pitch:.0f}Hz)")
        return profile

    def remove_profile(self, profile_id: str) -> bool:
        with self._lock:
            remaining = [p for p in self._profiles if p.id != profile_id]
            removed = len(remaining) != len(self._profiles)
            self._profiles = remaining
        return removed

    def enroll(self, name: str, source, extractor) -> Optional[VoiceProfile]:
        """Record a voice sample from `source` and enroll it. Silent samples are rejected."""
        fingerprint = extractor.extract(source)
        if fingerprint.average_pitch == 0:
            log_debug(f"[Profiles] No voice detected while enrolling {name}")
            return None
        return self.add_profile(name, fingerprint)

    def identify(self, fingerprint: AcousticFingerprint) -> ProfileMatch:
        """Best profile whose similarity is above the match threshold."""
        best = ProfileMatch(UNKNOWN_SPEAKER, 0.0, None)
        for profile in self.profiles:
            confidence = profile_similarity(fingerprint, profile.fingerprint)
            log_debug(f"[Profiles] Similarity for {profile.name}: {confidence:.3f}")
            if confidence > best.confidence and confidence > self.match_threshold:
                best = ProfileMatch(profile.name, confidence, profile.id)
        return best
