"""
Tests for VAD utterance segmentation.
"""

import queue
import threading
import numpy as np
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))
from speakers.segmenter import UtteranceSegmenter

FRAME = 480  # 30ms at 16kHz


class LoudnessVad:
    """Calls anything above a fixed amplitude speech."""

    def is_speech(self, data, sample_rate):
        return int(np.abs(np.frombuffer(data, dtype=np.int16)).max()) > 1000


class BrokenVad:
    def is_speech(self, data, sample_rate):
        raise ValueError("bad frame")


def speech(frames):
    return np.full(frames * FRAME, 5000, dtype=np.int16)


def silence(frames):
    return np.zeros(frames * FRAME, dtype=np.int16)


class FakeCapture:
    def __init__(self, chunks):
        self._queue = queue.Queue()
        for chunk in chunks:
            self._queue.put(chunk)

    def get_mic_audio(self, timeout=0.1):
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None


@pytest.fixture
def segmenter():
    return UtteranceSegmenter(vad=LoudnessVad())


class TestFeed:

    def test_silence_ends_utterance(self, segmenter):
        audio = np.concatenate([silence(10), speech(40), silence(30)])
        utterances = segmenter.feed(audio)

        assert len(utterances) == 1
        utterance = utterances[0]
        assert utterance.timestamp == pytest.approx(10 * FRAME / 16000)
        assert utterance.duration == pytest.approx(40 * FRAME / 16000)
        assert len(utterance.audio) == 40 * FRAME
        assert np.all(utterance.audio == 5000)

    def test_pause_shorter_than_silence_keeps_utterance(self, segmenter):
        audio = np.concatenate([speech(20), silence(5), speech(20), silence(25)])
        utterances = segmenter.feed(audio)
        assert len(utterances) == 1
        assert len(utterances[0].audio) == 45 * FRAME

    def test_short_burst_dropped(self, segmenter):
        assert segmenter.feed(np.concatenate([speech(5), silence(25)])) == []
        assert segmenter.flush() is None

    def test_partial_frames_carry_over(self, segmenter):
        audio = np.concatenate([speech(40), silence(25)])
        utterances = []
        for start in range(0, len(audio), 317):
            utterances.extend(segmenter.feed(audio[start:start + 317]))
        assert len(utterances) == 1
        assert utterances[0].timestamp == 0.0

    def test_max_duration_splits(self):
        segmenter = UtteranceSegmenter(vad=LoudnessVad(), max_utterance_seconds=1.0)
        utterances = segmenter.feed(speech(66))
        assert len(utterances) == 1
        assert len(utterances[0].audio) == 34 * FRAME

        rest = segmenter.flush()
        assert rest is not None
        assert len(rest.audio) == 32 * FRAME
        assert rest.timestamp == pytest.approx(34 * FRAME / 16000)

    def test_vad_error_counts_as_speech(self):
        segmenter = UtteranceSegmenter(vad=BrokenVad())
        assert segmenter.feed(silence(20)) == []
        assert segmenter.flush().duration == pytest.approx(20 * FRAME / 16000)


class TestBackgroundLoop:

    def test_start_and_stop(self):
        received = []
        done = threading.Event()

        def on_utterance(utterance):
            received.append(utterance)
            done.set()

        segmenter = UtteranceSegmenter(vad=LoudnessVad(), on_utterance=on_utterance)
        capture = FakeCapture([speech(20), speech(20), silence(25)])
        assert segmenter.start(capture)
        assert segmenter.is_running()
        assert done.wait(5.0)

        assert segmenter.stop() is None
        assert not segmenter.is_running()
        assert len(received) == 1
        assert received[0].duration == pytest.approx(40 * FRAME / 16000)

    def test_stop_flushes_tail(self):
        segmenter = UtteranceSegmenter(vad=LoudnessVad())
        segmenter.start(FakeCapture([]))
        segmenter.feed(speech(30))
        tail = segmenter.stop()
        assert tail is not None
        assert len(tail.audio) == 30 * FRAME
