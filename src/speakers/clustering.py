"""
Online speaker clustering.

Groups utterance fingerprints into provisional speakers ("Speaker 1",
"Speaker 2", ...) without enrollment. The number of clusters is capped by the
expected speaker count; once the cap is reached, utterances that match no
speaker are force-merged into the closest one.
"""

import math
import threading
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from logger import log_debug
from utils import ConfigManager
from .fingerprint import AcousticFingerprint, DistanceWeights, fingerprint_distance

UNKNOWN_SPEAKER = "Unknown Speaker"

MIN_SPEAKERS = 1
MAX_SPEAKERS = 10


@dataclass(frozen=True)
class ClusteringConfig:
    """Tunable clustering constants."""
    expected_speakers: int = 2
    similarity_threshold: float = 0.35  # Distance below this joins an existing speaker
    match_confidence_floor: float = 0.5
    forced_confidence_floor: float = 0.3  # Lower floor flags a budget-forced merge
    weights: DistanceWeights = field(default_factory=DistanceWeights)

    @classmethod
    def from_config(cls, section: Optional[dict] = None) -> "ClusteringConfig":
        """Build from the `clustering` config section."""
        if section is None:
            section = ConfigManager.get_config_section('clustering')
        defaults = cls()
        section = section if isinstance(section, dict) else {}
        values = {}
        for name in ('expected_speakers', 'similarity_threshold', 'match_confidence_floor', 'forced_confidence_floor'):
            value = section.get(name)
            default = getattr(defaults, name)
            values[name] = type(default)(value) if value is not None else default
        return cls(weights=DistanceWeights.from_config(section), **values)


@dataclass
class SpeakerCluster:
    """A provisional speaker: every fingerprint assigned so far and their mean."""
    id: str
    display_name: str
    samples: List[AcousticFingerprint] = field(default_factory=list)
    centroid: AcousticFingerprint = field(default_factory=AcousticFingerprint)

    def add_sample(self, fingerprint: AcousticFingerprint):
        """
        Append and recompute the centroid from the full history.

        O(n) per call. An incremental running mean would give the same result
        in O(1) if sessions ever get long enough to matter.
        """
        self.samples.append(fingerprint)
        self.centroid = AcousticFingerprint.mean(self.samples)

    def snapshot(self) -> "SpeakerCluster":
        """Copy safe to hand to display code."""
        return replace(self, samples=list(self.samples))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "sample_count": len(self.samples),
            "centroid": self.centroid.to_dict(),
        }


class SpeakerClusterer:
    """
    One recording session's speaker clusters.

    Thread-safe: every public method holds the session lock, so the
    append + centroid update of an assignment never interleaves with
    another call.

    Usage:
        clusterer = SpeakerClusterer(expected_speakers=3)
        label, confidence = clusterer.identify_speaker(fingerprint)
    """

    def __init__(
        self,
        expected_speakers: Optional[int] = None,
        config: Optional[ClusteringConfig] = None
    ):
        self.config = config or ClusteringConfig()
        self._clusters: List[SpeakerCluster] = []
        self._expected_speakers = self._clamp(self.config.expected_speakers)
        self._lock = threading.Lock()
        if expected_speakers is not None:
            self.set_expected_speakers(expected_speakers)

    @staticmethod
    def _clamp(count: int) -> int:
        return max(MIN_SPEAKERS, min(MAX_SPEAKERS, int(count)))

    @property
    def expected_speakers(self) -> int:
        return self._expected_speakers

    def set_expected_speakers(self, count) -> int:
        """Set the cluster budget, clamped to 1-10. Existing clusters are left alone."""
        try:
            clamped = self._clamp(count)
        except (TypeError, ValueError, OverflowError):
            log_debug(f"[Clustering] Ignoring invalid speaker count: {count!r}")
            return self._expected_speakers
        with self._lock:
            self._expected_speakers = clamped
        log_debug(f"[Clustering] Expected speakers set to {clamped}")
        return clamped

    def reset(self):
        """Forget every cluster. The speaker budget is kept."""
        with self._lock:
            self._clusters = []
        log_debug("[Clustering] Reset all clusters")

    def rename_cluster(self, cluster_id: str, new_name: str) -> bool:
        """Rename a speaker. Unknown ids are ignored."""
        with self._lock:
            for cluster in self._clusters:
                if cluster.id == str(cluster_id):
                    cluster.display_name = new_name
                    log_debug(f"[Clustering] Renamed speaker {cluster_id} to {new_name}")
                    return True
        return False

    def get_clusters(self) -> List[SpeakerCluster]:
        """Snapshot of the clusters in creation order."""
        with self._lock:
            return [cluster.snapshot() for cluster in self._clusters]

    def distance(self, a: AcousticFingerprint, b: AcousticFingerprint) -> float:
        return fingerprint_distance(a, b, self.config.weights)

    def identify_speaker(self, fingerprint: AcousticFingerprint) -> Tuple[str, float]:
        """
        Assign a fingerprint to a speaker.

        Returns:
            (label, confidence). Confidence is 1.0 for a new speaker,
            at least 0.5 for a match and at least 0.3 for a forced merge.
        """
        with self._lock:
            if not self._clusters:
                cluster = self._create_cluster(fingerprint)
                log_debug(f"[Clustering] Created first cluster - {cluster.display_name}")
                return cluster.display_name, 1.0

            best, best_distance = self._closest_cluster(fingerprint)

            if best is not None and best_distance < self.config.similarity_threshold:
                best.add_sample(fingerprint)
                confidence = max(self.config.match_confidence_floor, 1.0 - best_distance)
                log_debug(f"[Clustering] Matched {best.display_name} (d={best_distance:.3f}, conf={confidence:.2f})")
                return best.display_name, confidence

            if len(self._clusters) < self._expected_speakers:
                cluster = self._create_cluster(fingerprint)
                log_debug(f"[Clustering] NEW: {cluster.display_name} (closest d={best_distance:.3f})")
                return cluster.display_name, 1.0

            if best is not None:
                best.add_sample(fingerprint)
                confidence = max(self.config.forced_confidence_floor, 1.0 - best_distance)
                log_debug(f"[Clustering] Force-assigned to {best.display_name} "
                          f"(d={best_distance:.3f}, budget={self._expected_speakers})")
                return best.display_name, confidence

            log_debug("[Clustering] Could not identify speaker")
            return UNKNOWN_SPEAKER, 0.0

    def _closest_cluster(self, fingerprint: AcousticFingerprint) -> Tuple[Optional[SpeakerCluster], float]:
        """Minimum-distance cluster; ties go to the earliest. NaN distances never win."""
        best = None
        best_distance = math.inf
        for cluster in self._clusters:
            distance = self.distance(fingerprint, cluster.centroid)
            if distance < best_distance:
                best, best_distance = cluster, distance
        return best, best_distance

    def _create_cluster(self, fingerprint: AcousticFingerprint) -> SpeakerCluster:
        cluster_id = str(len(self._clusters) + 1)
        cluster = SpeakerCluster(
            id=cluster_id,
            display_name=f"Speaker {cluster_id}",
            samples=[fingerprint],
            centroid=fingerprint,
        )
        self._clusters.append(cluster)
        return cluster
