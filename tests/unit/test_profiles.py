"""
Tests for enrolled voice profile matching.
"""

import numpy as np
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))
from speakers.capture import ArraySpectrumSource
from speakers.clustering import UNKNOWN_SPEAKER
from speakers.features import FeatureExtractor
from speakers.fingerprint import AcousticFingerprint
from speakers.profiles import ProfileMatcher, VoiceProfile, profile_similarity


class TestSimilarity:

    def test_identical(self, make_fingerprint):
        fp = make_fingerprint()
        assert profile_similarity(fp, fp) == pytest.approx(1.0)

    def test_pitch_term_saturates(self, make_fingerprint):
        """Pitch more than 150 Hz away contributes nothing; the rest still counts."""
        sim = profile_similarity(make_fingerprint(pitch=100), make_fingerprint(pitch=400))
        assert sim == pytest.approx(0.55)

    def test_everything_far(self):
        sim = profile_similarity(AcousticFingerprint.zero(), AcousticFingerprint(500.0, 500.0, 5000.0, 5000.0))
        assert sim == 0.0


class TestProfileMatcher:

    def test_no_profiles(self, make_fingerprint):
        matcher = ProfileMatcher(match_threshold=0.5)
        assert matcher.identify(make_fingerprint()) == (UNKNOWN_SPEAKER, 0.0, None)

    def test_best_match_wins(self, make_fingerprint):
        matcher = ProfileMatcher(match_threshold=0.5)
        alice = matcher.add_profile("Alice", make_fingerprint(pitch=210))
        matcher.add_profile("Bob", make_fingerprint(pitch=110))

        name, confidence, profile_id = matcher.identify(make_fingerprint(pitch=200))
        assert name == "Alice"
        assert profile_id == alice.id
        assert confidence == pytest.approx(1.0 - 0.45 * 10 / 150)

    def test_below_threshold_is_unknown(self, make_fingerprint):
        matcher = ProfileMatcher(match_threshold=0.9)
        matcher.add_profile("Alice", make_fingerprint(pitch=300))
        assert matcher.identify(make_fingerprint(pitch=100)).id is None

    def test_remove_and_update(self, make_fingerprint):
        matcher = ProfileMatcher(match_threshold=0.5)
        alice = matcher.add_profile("Alice", make_fingerprint())
        assert matcher.remove_profile(alice.id)
        assert not matcher.remove_profile(alice.id)
        assert not matcher.has_profiles()

        matcher.update_profiles([VoiceProfile("p1", "Carol", make_fingerprint(pitch=250))])
        assert [p.name for p in matcher.profiles] == ["Carol"]

    def test_threshold_from_config(self):
        assert ProfileMatcher().match_threshold == 0.5

    def test_profile_from_dict(self):
        profile = VoiceProfile.from_dict({
            "id": "42",
            "name": "Dana",
            "voicePattern": {"avgPitch": 190, "pitchRange": 30, "avgFrequency": 350, "spectralCentroid": 160}
        })
        assert profile.id == "42"
        assert profile.fingerprint.average_pitch == 190.0
        assert VoiceProfile.from_dict(profile.to_dict()) == profile


class TestEnrollment:

    def test_enroll_from_tone(self, tone):
        matcher = ProfileMatcher(match_threshold=0.5)
        profile = matcher.enroll("Erin", ArraySpectrumSource(tone(180.0)), FeatureExtractor())
        assert profile is not None
        assert profile.name == "Erin"
        assert profile.fingerprint.average_pitch > 0

    def test_enroll_silence_rejected(self):
        matcher = ProfileMatcher(match_threshold=0.5)
        assert matcher.enroll("Nobody", ArraySpectrumSource(np.zeros(16000)), FeatureExtractor()) is None
        assert not matcher.has_profiles()
