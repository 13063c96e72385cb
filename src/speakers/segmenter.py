"""
Utterance segmentation with VAD.

Cuts the microphone stream at natural speech breaks (trailing silence) so
each utterance can be labelled with a speaker.
"""

import threading
import time
import numpy as np
import webrtcvad
from dataclasses import dataclass
from typing import Callable, List, Optional

from logger import log_debug, log_exception


@dataclass
class Utterance:
    """A finalized stretch of speech."""
    audio: np.ndarray      # int16 mono
    timestamp: float       # Seconds since the segmenter started
    duration: float        # Seconds


class UtteranceSegmenter:
    """
    Emits an Utterance when silence follows speech, or when speech runs past
    the maximum duration. Bursts shorter than the minimum are dropped.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        vad_aggressiveness: int = 2,
        silence_duration_ms: int = 600,
        min_utterance_seconds: float = 0.5,
        max_utterance_seconds: float = 15.0,
        on_utterance: Optional[Callable[[Utterance], None]] = None,
        vad=None
    ):
        self.sample_rate = sample_rate
        self.on_utterance = on_utterance

        # 30ms frames at 16kHz = 480 samples per frame
        self._vad = vad or webrtcvad.Vad(vad_aggressiveness)
        self._frame_duration_ms = 30
        self._frame_size = int(sample_rate * self._frame_duration_ms / 1000)
        self._silence_frames_needed = max(1, int(silence_duration_ms / self._frame_duration_ms))
        self._min_samples = int(sample_rate * min_utterance_seconds)
        self._max_samples = int(sample_rate * max_utterance_seconds)

        # Buffers
        self._vad_buffer: np.ndarray = np.array([], dtype=np.int16)
        self._speech_frames: List[np.ndarray] = []
        self._silence_frame_count = 0
        self._samples_seen = 0
        self._utterance_start = 0

        # Threading
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._capture = None

    def feed(self, audio: np.ndarray) -> List[Utterance]:
        """Process captured int16 audio; returns any utterances it completed."""
        finished = []
        self._vad_buffer = np.concatenate([self._vad_buffer, np.asarray(audio, dtype=np.int16)])

        # Process complete 30ms frames from VAD buffer
        while len(self._vad_buffer) >= self._frame_size:
            frame = self._vad_buffer[:self._frame_size]
            self._vad_buffer = self._vad_buffer[self._frame_size:]
            frame_start = self._samples_seen
            self._samples_seen += len(frame)

            try:
                is_speech = self._vad.is_speech(frame.tobytes(), self.sample_rate)
            except Exception:
                is_speech = True  # Assume speech on error

            if is_speech:
                if not self._speech_frames:
                    self._utterance_start = frame_start
                self._speech_frames.append(frame)
                self._silence_frame_count = 0
            elif self._speech_frames:
                self._speech_frames.append(frame)
                self._silence_frame_count += 1

            if not self._speech_frames:
                continue

            buffered = len(self._speech_frames) * self._frame_size
            if buffered >= self._max_samples:
                utterance = self._create_utterance("max_duration")
            elif self._silence_frame_count >= self._silence_frames_needed:
                utterance = self._create_utterance("silence_detected")
            else:
                continue
            if utterance is not None:
                finished.append(utterance)

        return finished

    def flush(self) -> Optional[Utterance]:
        """Emit whatever speech is buffered (end of session)."""
        if not self._speech_frames:
            return None
        return self._create_utterance("flush")

    def _create_utterance(self, reason: str) -> Optional[Utterance]:
        # Trailing silence is not part of the utterance
        speech = self._speech_frames[:len(self._speech_frames) - self._silence_frame_count]
        self._speech_frames = []
        self._silence_frame_count = 0

        samples = sum(len(f) for f in speech)
        if samples < self._min_samples:
            log_debug(f"[Segmenter] Dropped {samples / self.sample_rate:.2f}s burst ({reason})")
            return None

        audio = np.concatenate(speech)
        log_debug(f"[Segmenter] Utterance ready: {samples} samples, reason={reason}")
        return Utterance(
            audio=audio,
            timestamp=self._utterance_start / self.sample_rate,
            duration=samples / self.sample_rate
        )

    def start(self, capture) -> bool:
        """Consume capture.get_mic_audio() on a background thread."""
        if self._running:
            return True
        self._capture = capture
        self._running = True
        self._thread = threading.Thread(target=self._process_loop, daemon=True)
        self._thread.start()
        log_debug("[Segmenter] Started with VAD-based segmentation")
        return True

    def stop(self) -> Optional[Utterance]:
        """Stop processing and return any buffered speech as a final utterance."""
        if not self._running:
            return None
        self._running = False
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
        return self.flush()

    def _process_loop(self):
        try:
            while self._running:
                audio = self._capture.get_mic_audio(timeout=0.1)
                if audio is None:
                    continue
                for utterance in self.feed(audio):
                    if self.on_utterance:
                        self.on_utterance(utterance)
                time.sleep(0.01)
        except Exception as e:
            log_exception(e, "in segmenter loop")

    def is_running(self) -> bool:
        return self._running
