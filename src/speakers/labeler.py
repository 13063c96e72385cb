"""
Speaker labelling for finalized utterances.

Each utterance gets a fingerprint extraction that races a deadline. The
winner of the race decides the label exactly once: a late extraction result
is discarded and never reaches the clusterer.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Callable, List, Optional

from logger import log_debug, log_exception
from .capture import SpectrumSource
from .clustering import UNKNOWN_SPEAKER, SpeakerCluster, SpeakerClusterer
from .features import FeatureExtractor
from .fingerprint import AcousticFingerprint
from .profiles import ProfileMatcher
from .transcript import Transcript, TranscriptEntry


@dataclass(frozen=True)
class LabelResult:
    """Outcome of identifying one utterance."""
    label: str
    confidence: float
    fingerprint: Optional[AcousticFingerprint] = None
    timed_out: bool = False
    source: str = "cluster"  # "cluster", "profile" or "fallback"


def unknown_result(timed_out: bool = False) -> LabelResult:
    return LabelResult(UNKNOWN_SPEAKER, 0.0, timed_out=timed_out, source="fallback")


class PendingLabel:
    """
    One-shot completion marker for a single utterance.

    Whoever claims it first (the extraction, the deadline or shutdown) is the
    only side allowed to touch session state and resolve it.
    """

    def __init__(self, entry: Optional[TranscriptEntry] = None):
        self.entry = entry
        self._lock = threading.Lock()
        self._claimed = False
        self._result: Optional[LabelResult] = None
        self._resolved = threading.Event()

    @property
    def done(self) -> bool:
        return self._resolved.is_set()

    @property
    def result(self) -> Optional[LabelResult]:
        with self._lock:
            return self._result

    def claim(self) -> bool:
        """Take ownership. Returns False if another side already holds it."""
        with self._lock:
            if self._claimed or self._result is not None:
                return False
            self._claimed = True
            return True

    def resolve(self, result: LabelResult) -> bool:
        """Record the result. Only the first call wins; later calls return False."""
        with self._lock:
            if self._result is not None:
                return False
            self._claimed = True
            self._result = result
        self._resolved.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> Optional[LabelResult]:
        """Block until resolved by whichever side claimed it."""
        self._resolved.wait(timeout)
        return self.result


class SpeakerLabeler:
    """
    Labels utterances without blocking the caller.

    Usage:
        labeler = SpeakerLabeler(SpeakerClusterer(), source, transcript=transcript)
        entry = transcript.add_entry(12.5, "Let's get started")
        future = labeler.label_utterance(entry)   # returns immediately
    """

    def __init__(
        self,
        clusterer: SpeakerClusterer,
        source: Optional[SpectrumSource],
        extractor: Optional[FeatureExtractor] = None,
        timeout: Optional[float] = None,
        transcript: Optional[Transcript] = None,
        profiles: Optional[ProfileMatcher] = None,
        on_result: Optional[Callable[[Optional[TranscriptEntry], LabelResult], None]] = None,
        max_workers: int = 4
    ):
        self.clusterer = clusterer
        self.source = source
        self.extractor = extractor or FeatureExtractor()
        self.timeout = timeout if timeout is not None else self.extractor.config.timeout_seconds
        self.transcript = transcript
        self.profiles = profiles
        self.on_result = on_result

        # Extractions may overlap; waiters only decide who labels
        self._extract_pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="murmur-extract")
        self._wait_pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="murmur-label")
        self._pending: List[PendingLabel] = []
        self._pending_lock = threading.Lock()
        self._closed = False

    def label_utterance(self, entry: Optional[TranscriptEntry] = None) -> Future:
        """Start identifying the speaker of a just-finalized utterance."""
        pending = PendingLabel(entry)
        if self._closed:
            future: Future = Future()
            self._finish(pending, unknown_result())
            future.set_result(pending.result)
            return future

        with self._pending_lock:
            self._pending.append(pending)

        # The deadline runs from submission, not from when a worker gets to it
        deadline = time.monotonic() + self.timeout
        cancel_event = threading.Event()
        extraction = self._extract_pool.submit(self.extractor.extract, self.source, cancel_event)
        return self._wait_pool.submit(self._await_extraction, pending, extraction, cancel_event, deadline)

    def _await_extraction(
        self,
        pending: PendingLabel,
        extraction: Future,
        cancel_event: threading.Event,
        deadline: float
    ) -> LabelResult:
        fingerprint = None
        try:
            fingerprint = extraction.result(timeout=max(0.0, deadline - time.monotonic()))
        except FuturesTimeoutError:
            cancel_event.set()
            extraction.cancel()
            log_debug(f"[Labeler] Extraction timed out after {self.timeout:.2f}s")
            result = unknown_result(timed_out=True)
        except Exception as e:
            cancel_event.set()
            log_exception(e, "in speaker extraction")
            result = unknown_result()

        if not pending.claim():
            # Shutdown got there first; a late fingerprint must not touch the session
            return pending.wait()
        if fingerprint is not None:
            try:
                result = self.identify(fingerprint)
            except Exception as e:
                log_exception(e, "in speaker identification")
                result = unknown_result()

        self._finish(pending, result)
        return pending.wait()

    def identify(self, fingerprint: AcousticFingerprint) -> LabelResult:
        """Enrolled profiles first (when any exist), then the session clusters."""
        if self.profiles is not None and self.profiles.has_profiles():
            match = self.profiles.identify(fingerprint)
            if match.id is not None:
                return LabelResult(match.name, match.confidence, fingerprint, source="profile")

        label, confidence = self.clusterer.identify_speaker(fingerprint)
        return LabelResult(label, confidence, fingerprint)

    def _finish(self, pending: PendingLabel, result: LabelResult):
        if not pending.resolve(result):
            return
        with self._pending_lock:
            if pending in self._pending:
                self._pending.remove(pending)
        if pending.entry is not None:
            if self.transcript is not None:
                self.transcript.annotate(pending.entry, result.label, result.confidence)
            else:
                pending.entry.speaker = result.label
                pending.entry.confidence = result.confidence
        if self.on_result:
            self.on_result(pending.entry, result)

    # --- Settings surface ---

    def set_expected_speakers(self, count) -> int:
        return self.clusterer.set_expected_speakers(count)

    def rename_speaker(self, cluster_id: str, new_name: str) -> bool:
        """Rename a cluster and relabel transcript lines already attributed to it."""
        old_name = next((c.display_name for c in self.clusterer.get_clusters() if c.id == str(cluster_id)), None)
        if old_name is None or not self.clusterer.rename_cluster(cluster_id, new_name):
            return False
        if self.transcript is not None:
            self.transcript.rename_speaker(old_name, new_name)
        return True

    def reset(self):
        self.clusterer.reset()

    def get_clusters(self) -> List[SpeakerCluster]:
        return self.clusterer.get_clusters()

    def shutdown(self, wait: bool = True):
        """Stop accepting work. Utterances still pending are labelled Unknown Speaker."""
        self._closed = True
        with self._pending_lock:
            pending = list(self._pending)
        for item in pending:
            # Labels already being identified finish normally
            if item.claim():
                self._finish(item, unknown_result())
        self._wait_pool.shutdown(wait=wait)
        self._extract_pool.shutdown(wait=wait)
