"""
Audio sources for speaker fingerprinting.

Both sources produce analyser-style magnitude frames: a Blackman-windowed FFT
over the most recent fft_size samples, smoothed across frames and mapped from
decibels onto 0-255 (the same shape a browser AnalyserNode hands out).

LiveSpectrumSource captures the microphone with sounddevice.
ArraySpectrumSource replays an in-memory signal (files, tests).
"""

import queue
import threading
from abc import ABC, abstractmethod
import numpy as np
from dataclasses import dataclass
from typing import List, Optional
from scipy.signal import get_window

from logger import log_debug, log_error

try:
    import sounddevice as sd
except OSError as e:  # PortAudio library missing
    sd = None
    log_error("[Capture] sounddevice unavailable", e)


@dataclass(frozen=True)
class AnalyserSettings:
    """Shape of the frames an analyser produces."""
    fft_size: int = 2048
    smoothing: float = 0.8
    min_decibels: float = -100.0
    max_decibels: float = -30.0

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2


class SpectrumAnalyser:
    """
    Turns time-domain windows into smoothed byte-scaled magnitude frames.

    Stateful: smoothing blends each frame with the previous one, so every
    subscriber owns its own analyser.
    """

    def __init__(self, settings: AnalyserSettings = AnalyserSettings()):
        self.settings = settings
        self._window = get_window('blackman', settings.fft_size, fftbins=False)
        self._previous = np.zeros(settings.bin_count)

    def analyse(self, samples: np.ndarray) -> np.ndarray:
        """
        Analyse the latest samples (float, -1..1). Shorter input is left-padded with silence.

        Returns:
            fft_size / 2 magnitudes in 0..255
        """
        fft_size = self.settings.fft_size
        samples = np.asarray(samples, dtype=np.float64)[-fft_size:]
        if len(samples) < fft_size:
            samples = np.concatenate([np.zeros(fft_size - len(samples)), samples])

        spectrum = np.fft.rfft(samples * self._window)[:self.settings.bin_count]
        magnitude = np.abs(spectrum) / fft_size

        tau = self.settings.smoothing
        smoothed = tau * self._previous + (1.0 - tau) * magnitude
        self._previous = smoothed

        with np.errstate(divide='ignore'):
            decibels = 20.0 * np.log10(smoothed)
        span = self.settings.max_decibels - self.settings.min_decibels
        scaled = 255.0 * (decibels - self.settings.min_decibels) / span
        return np.floor(np.clip(scaled, 0.0, 255.0))


def to_float_audio(audio: np.ndarray) -> np.ndarray:
    """int16 PCM (or float) to float64 in -1..1, mixing channels down to mono."""
    audio = np.asarray(audio)
    if audio.ndim > 1:
        audio = audio.mean(axis=1)
    if np.issubdtype(audio.dtype, np.integer):
        return audio.astype(np.float64) / 32768.0
    return audio.astype(np.float64)


class FrameSubscription(ABC):
    """
    One consumer's stream of frames from a source.

    next_frame() returns None when no frame arrived within the timeout;
    `closed` tells a consumer the stream is over for good.
    """

    sample_rate: int
    fft_size: int

    @property
    @abstractmethod
    def closed(self) -> bool:
        """True once no further frames will arrive."""
        pass

    @abstractmethod
    def next_frame(self, timeout: float = 0.1) -> Optional[np.ndarray]:
        """
        Wait for the next frame.

        Args:
            timeout: Seconds to wait before giving up

        Returns:
            fft_size / 2 magnitudes in 0..255, or None if nothing arrived
        """
        pass

    @abstractmethod
    def close(self):
        """Stop receiving frames."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class SpectrumSource(ABC):
    """Anything the feature extractor can sample frames from."""

    sample_rate: int
    fft_size: int

    @abstractmethod
    def subscribe(self) -> FrameSubscription:
        """Open an independent frame stream for one consumer."""
        pass


class _ArraySubscription(FrameSubscription):
    def __init__(self, source: "ArraySpectrumSource"):
        self.sample_rate = source.sample_rate
        self.fft_size = source.fft_size
        self._source = source
        self._analyser = SpectrumAnalyser(source.settings)
        self._frame_index = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def next_frame(self, timeout: float = 0.1) -> Optional[np.ndarray]:
        if self._closed:
            return None
        end = self._source.frame_end(self._frame_index)
        if end is None:
            self._closed = True
            return None
        self._frame_index += 1
        return self._analyser.analyse(self._source.samples[max(0, end - self.fft_size):end])

    def close(self):
        self._closed = True


class ArraySpectrumSource(SpectrumSource):
    """
    Replays a recorded signal as analyser frames, one every sample_rate / frame_rate samples.

    Usage:
        source = ArraySpectrumSource(audio, sample_rate=16000)
        fingerprint = FeatureExtractor().extract(source)
    """

    def __init__(
        self,
        audio: np.ndarray,
        sample_rate: int = 16000,
        fft_size: int = 2048,
        frame_rate: float = 60.0,
        smoothing: float = 0.8
    ):
        self.samples = to_float_audio(audio)
        self.sample_rate = int(sample_rate)
        self.fft_size = int(fft_size)
        self.settings = AnalyserSettings(fft_size=self.fft_size, smoothing=smoothing)
        self._hop = self.sample_rate / float(frame_rate)

    def frame_end(self, index: int) -> Optional[int]:
        """Sample index one past the end of frame `index`, or None past the signal."""
        end = int(round((index + 1) * self._hop))
        if end > len(self.samples):
            return None
        return end

    @property
    def frame_count(self) -> int:
        return int(len(self.samples) // self._hop) if self._hop > 0 else 0

    def subscribe(self) -> FrameSubscription:
        return _ArraySubscription(self)


class _LiveSubscription(FrameSubscription):
    def __init__(self, source: "LiveSpectrumSource", max_pending: int):
        self.sample_rate = source.sample_rate
        self.fft_size = source.fft_size
        self._source = source
        self._analyser = SpectrumAnalyser(source.settings)
        self._frames: queue.Queue = queue.Queue(maxsize=max_pending)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set() and self._frames.empty()

    def push(self, window: np.ndarray):
        """Called from the capture thread with the latest fft_size samples."""
        if self._closed.is_set():
            return
        frame = self._analyser.analyse(window)
        try:
            self._frames.put_nowait(frame)
        except queue.Full:
            pass  # Consumer fell behind; newest frames are dropped, not queued

    def next_frame(self, timeout: float = 0.1) -> Optional[np.ndarray]:
        try:
            return self._frames.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self):
        if not self._closed.is_set():
            self._closed.set()
            self._source._unsubscribe(self)


class LiveSpectrumSource(SpectrumSource):
    """
    Captures the microphone and fans analyser frames out to subscribers.

    Frames are paced by the sample clock: one frame per sample_rate / frame_rate
    captured samples, computed only while someone is subscribed. Raw int16 blocks
    are also queued on mic_queue for the utterance segmenter.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        fft_size: int = 2048,
        frame_rate: float = 60.0,
        block_size: int = 512,
        device: Optional[int] = None,
        smoothing: float = 0.8
    ):
        self.sample_rate = int(sample_rate)
        self.fft_size = int(fft_size)
        self.frame_rate = float(frame_rate)
        self.block_size = int(block_size)
        self.device = device
        self.settings = AnalyserSettings(fft_size=self.fft_size, smoothing=smoothing)

        self._recording = False
        self._stream = None
        self._lock = threading.Lock()
        self._subscribers: List[_LiveSubscription] = []
        self._history = np.zeros(self.fft_size)
        self._hop = self.sample_rate / self.frame_rate
        self._pending_samples = 0.0

        # Raw audio for utterance segmentation
        self.mic_queue: queue.Queue = queue.Queue()

        self.mic_device = self._find_mic()

    def _find_mic(self) -> Optional[dict]:
        """Find the configured (or default) input device."""
        if sd is None:
            return None
        try:
            if self.device is not None:
                mic = sd.query_devices(self.device)
            else:
                mic = sd.query_devices(kind='input')
            log_debug(f"[Capture] Using mic: {mic['name']}")
            return mic
        except Exception as e:
            log_error("[Capture] Error finding input device", e)
            return None

    def is_available(self) -> bool:
        return self.mic_device is not None

    def _callback(self, indata, frames, time_info, status):
        """sounddevice callback: runs on the PortAudio thread."""
        if not self._recording:
            return
        if status:
            log_debug(f"[Capture] Stream status: {status}")
        block = indata[:, 0].copy() if indata.ndim > 1 else indata.copy()
        self.mic_queue.put(block)
        self.feed(block)

    def feed(self, block: np.ndarray):
        """Append captured samples and push any frames that are now due."""
        samples = to_float_audio(block)
        with self._lock:
            keep = self.fft_size + len(samples)
            self._history = np.concatenate([self._history, samples])[-keep:]
            subscribers = list(self._subscribers)
            if not subscribers:
                self._pending_samples = 0.0
                return
            self._pending_samples += len(samples)
            ends = []
            while self._pending_samples >= self._hop:
                self._pending_samples -= self._hop
                ends.append(len(self._history) - int(self._pending_samples))
            history = self._history

        for end in ends:
            window = history[max(0, end - self.fft_size):end]
            for subscriber in subscribers:
                subscriber.push(window)

    def subscribe(self) -> FrameSubscription:
        subscription = _LiveSubscription(self, max_pending=max(1, int(self.frame_rate * 5)))
        with self._lock:
            if not self._recording:
                # Nothing will ever arrive; hand back an already finished stream
                subscription._closed.set()
                return subscription
            self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: _LiveSubscription):
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def start(self) -> bool:
        """Start capturing audio."""
        if self._recording:
            return True
        if sd is None or self.mic_device is None:
            log_error("[Capture] No input device available")
            return False

        try:
            self._recording = True
            self._stream = sd.InputStream(
                device=self.device,
                samplerate=self.sample_rate,
                channels=1,
                dtype='int16',
                blocksize=self.block_size,
                callback=self._callback
            )
            self._stream.start()
            log_debug(f"[Capture] Mic stream started ({self.sample_rate}Hz, block={self.block_size})")
            return True
        except Exception as e:
            log_error("[Capture] Error starting capture", e)
            self.stop()
            return False

    def stop(self):
        """Stop capturing audio. Open subscriptions end once drained."""
        self._recording = False

        if self._stream:
            try:
                self._stream.stop()
                self._stream.close()
            except Exception as e:
                log_error("[Capture] Error closing stream", e)
            self._stream = None

        with self._lock:
            subscribers = list(self._subscribers)
            self._subscribers.clear()
        for subscription in subscribers:
            subscription._closed.set()

        log_debug("[Capture] Capture stopped")

    def get_mic_audio(self, timeout: float = 0.1) -> Optional[np.ndarray]:
        """Get queued microphone audio (int16)."""
        chunks = []
        # First wait for at least one item (with timeout)
        try:
            chunks.append(self.mic_queue.get(timeout=timeout))
        except queue.Empty:
            return None

        # Then drain any additional items without blocking
        while True:
            try:
                chunks.append(self.mic_queue.get_nowait())
            except queue.Empty:
                break

        return np.concatenate(chunks)

    def is_recording(self) -> bool:
        """Check if currently recording."""
        return self._recording
