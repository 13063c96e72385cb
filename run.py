"""
Murmur - live speaker labelling for meeting transcription.

Listens to the microphone, cuts speech into utterances and labels each one
Speaker 1, Speaker 2, ... as it happens.

Usage:
    python run.py
    python run.py --speakers 3

Commands while running:
    rename <id> <name>   Rename a speaker (e.g. "rename 1 Alice")
    enroll <name>        Speak for a few seconds to enroll a known voice
    speakers <n>         Change how many people are expected
    reset                Forget all speakers
    clusters             Show current speakers
    quit
"""

import argparse
import sys
from pathlib import Path
from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).parent / "src"))

from logger import MurmurLogger, log_exception  # noqa: E402
from utils import ConfigManager  # noqa: E402


def build_session(expected_speakers=None):
    """Wire capture, segmentation and labelling from configuration."""
    from speakers.capture import LiveSpectrumSource
    from speakers.clustering import ClusteringConfig, SpeakerClusterer
    from speakers.features import ExtractionConfig, FeatureExtractor
    from speakers.labeler import SpeakerLabeler
    from speakers.profiles import ProfileMatcher
    from speakers.segmenter import UtteranceSegmenter
    from speakers.transcript import Transcript

    audio = ConfigManager.get_config_section('audio')
    segmentation = ConfigManager.get_config_section('segmentation')
    extraction = ExtractionConfig.from_config()

    source = LiveSpectrumSource(
        sample_rate=audio.get('sample_rate', 16000),
        fft_size=extraction.fft_size,
        frame_rate=extraction.frame_rate,
        block_size=audio.get('block_size', 512),
        device=audio.get('device'),
        smoothing=extraction.smoothing
    )
    clusterer = SpeakerClusterer(expected_speakers, config=ClusteringConfig.from_config())
    transcript = Transcript(on_update=lambda entry: ConfigManager.console_print(Transcript.format_entry(entry)))
    labeler = SpeakerLabeler(
        clusterer,
        source,
        extractor=FeatureExtractor(extraction),
        transcript=transcript,
        profiles=ProfileMatcher()
    )

    def on_utterance(utterance):
        entry = transcript.add_entry(utterance.timestamp, f"({utterance.duration:.1f}s of speech)")
        if entry is not None:
            labeler.label_utterance(entry)

    segmenter = UtteranceSegmenter(
        sample_rate=source.sample_rate,
        vad_aggressiveness=segmentation.get('vad_aggressiveness', 2),
        silence_duration_ms=segmentation.get('silence_duration_ms', 600),
        min_utterance_seconds=segmentation.get('min_utterance_seconds', 0.5),
        max_utterance_seconds=segmentation.get('max_utterance_seconds', 15.0),
        on_utterance=on_utterance
    )
    return source, segmenter, labeler


def handle_command(line, labeler) -> bool:
    """Apply one interactive command. Returns False to quit."""
    parts = line.strip().split(maxsplit=2)
    if not parts:
        return True
    command = parts[0].lower()

    if command in ("quit", "exit", "q"):
        return False
    if command == "reset":
        labeler.reset()
        print("Speaker detection reset")
    elif command == "speakers" and len(parts) == 2:
        print(f"Expected speakers: {labeler.set_expected_speakers(parts[1])}")
    elif command == "rename" and len(parts) == 3:
        if labeler.rename_speaker(parts[1], parts[2]):
            print(f"Speaker {parts[1]} is now {parts[2]}")
        else:
            print(f"No speaker with id {parts[1]}")
    elif command == "enroll" and len(parts) >= 2:
        name = " ".join(parts[1:])
        print(f"Recording {name}, keep talking...")
        profile = labeler.profiles.enroll(name, labeler.source, labeler.extractor)
        if profile is None:
            print("No voice detected, try again")
        else:
            print(f"Enrolled {name} ({profile.fingerprint.average_pitch:.0f}Hz)")
    elif command == "clusters":
        clusters = labeler.get_clusters()
        if not clusters:
            print("No speakers yet")
        for cluster in clusters:
            print(f"  {cluster.id}: {cluster.display_name} - {len(cluster.samples)} utterances, "
                  f"{cluster.centroid.average_pitch:.0f}Hz")
    else:
        print(__doc__.split("Commands while running:")[1])
    return True


def main(argv=None):
    parser = argparse.ArgumentParser(description="Live speaker labelling from the microphone.")
    parser.add_argument("--speakers", type=int, default=None, help="Expected number of speakers (1-10)")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    args = parser.parse_args(argv)

    load_dotenv()
    ConfigManager.initialize(config_path=args.config)
    MurmurLogger.set_level(ConfigManager.get_config_value('misc', 'log_level') or "ERROR")

    source, segmenter, labeler = build_session(args.speakers)
    if not source.start():
        print("Error: could not open the microphone", file=sys.stderr)
        return 1

    segmenter.start(source)
    print(f"Listening... (expecting {labeler.clusterer.expected_speakers} speakers, type 'quit' to stop)")

    try:
        for line in sys.stdin:
            if not handle_command(line, labeler):
                break
    except KeyboardInterrupt:
        pass
    except Exception as e:
        log_exception(e, "in command loop")
    finally:
        final = segmenter.stop()
        if final is not None and segmenter.on_utterance:
            segmenter.on_utterance(final)
        source.stop()
        labeler.shutdown()

    return 0


if __name__ == '__main__':
    sys.exit(main())
