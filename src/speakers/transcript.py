"""
In-memory meeting transcript.

Entries are shown as soon as their text is final and annotated with a
speaker later, once identification resolves or times out.
"""

import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

PENDING_SPEAKER = "..."


@dataclass
class TranscriptEntry:
    """A single entry in the transcript."""
    timestamp: float                  # Seconds from start
    text: str                         # What was said
    speaker: str = PENDING_SPEAKER    # Speaker label once identified
    confidence: float = 0.0           # Identification confidence 0..1
    source: str = "mic"

    @property
    def is_pending(self) -> bool:
        return self.speaker == PENDING_SPEAKER

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "speaker": self.speaker,
            "text": self.text,
            "confidence": self.confidence,
            "source": self.source
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TranscriptEntry":
        """Create from dictionary."""
        return cls(
            timestamp=data["timestamp"],
            text=data["text"],
            speaker=data.get("speaker", PENDING_SPEAKER),
            confidence=data.get("confidence", 0.0),
            source=data.get("source", "mic")
        )


@dataclass
class Transcript:
    """Ordered transcript entries plus speaker annotation.

    on_update is called (from whichever thread annotated it) every time an
    entry gets its speaker, so a renderer can redraw that line.
    """

    on_update: Optional[Callable[[TranscriptEntry], None]] = None
    entries: List[TranscriptEntry] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add_entry(self, timestamp: float, text: str, source: str = "mic") -> Optional[TranscriptEntry]:
        """Add a finalized utterance. Empty text is ignored."""
        if not text or not text.strip():
            return None
        entry = TranscriptEntry(timestamp=timestamp, text=text.strip(), source=source)
        with self._lock:
            self.entries.append(entry)
        return entry

    def annotate(self, entry: TranscriptEntry, speaker: str, confidence: float):
        """Attach a speaker label to an entry already on screen."""
        with self._lock:
            entry.speaker = speaker
            entry.confidence = confidence
        if self.on_update:
            self.on_update(entry)

    def rename_speaker(self, old_name: str, new_name: str) -> int:
        """Relabel every entry attributed to old_name. Returns how many changed."""
        changed = 0
        with self._lock:
            for entry in self.entries:
                if entry.speaker == old_name:
                    entry.speaker = new_name
                    changed += 1
        return changed

    @property
    def participants(self) -> List[str]:
        """Identified speakers in order of first appearance."""
        seen = []
        with self._lock:
            for entry in self.entries:
                if not entry.is_pending and entry.speaker not in seen:
                    seen.append(entry.speaker)
        return seen

    def get_duration(self) -> float:
        """Duration in seconds based on last entry."""
        with self._lock:
            if not self.entries:
                return 0
            return self.entries[-1].timestamp

    @staticmethod
    def format_timestamp(seconds: float) -> str:
        """Format seconds as MM:SS or HH:MM:SS."""
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = int(seconds % 60)

        if hours > 0:
            return f"{hours:02d}:{minutes:02d}:{secs:02d}"
        return f"{minutes:02d}:{secs:02d}"

    @classmethod
    def format_entry(cls, entry: TranscriptEntry) -> str:
        """One display line, e.g. "[01:05] Speaker 2 (87%): Hello"."""
        if entry.is_pending:
            speaker = entry.speaker
        else:
            speaker = f"{entry.speaker} ({round(entry.confidence * 100)}%)"
        line = f"[{cls.format_timestamp(entry.timestamp)}] {speaker}"
        if entry.text:
            line += f": {entry.text}"
        return line
