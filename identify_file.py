#!/usr/bin/env python3
"""
Murmur Audio File Speaker Labeller
Treats each audio file as one utterance and groups them by speaker.

Usage:
    python identify_file.py <audio_file> [<audio_file> ...]
    python identify_file.py --speakers 3 clips/*.wav

Supports whatever libsndfile reads (.wav, .flac, .ogg, ...).
"""

import argparse
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))

from utils import ConfigManager  # noqa: E402


def identify_files(paths, expected_speakers=None, max_frames=None):
    """Label each file in order. Returns [(path, label, confidence)] and the clusterer."""
    import soundfile as sf
    from dataclasses import replace
    from speakers.capture import ArraySpectrumSource
    from speakers.clustering import ClusteringConfig, SpeakerClusterer
    from speakers.features import ExtractionConfig, FeatureExtractor

    extraction = ExtractionConfig.from_config()
    if max_frames is not None:
        extraction = replace(extraction, max_frames=max_frames)
    extractor = FeatureExtractor(extraction)
    clusterer = SpeakerClusterer(expected_speakers, config=ClusteringConfig.from_config())

    results = []
    for path in paths:
        audio, sample_rate = sf.read(path, dtype='float32', always_2d=False)
        source = ArraySpectrumSource(
            audio,
            sample_rate=sample_rate,
            fft_size=extraction.fft_size,
            frame_rate=extraction.frame_rate,
            smoothing=extraction.smoothing
        )
        fingerprint = extractor.extract(source)
        label, confidence = clusterer.identify_speaker(fingerprint)
        results.append((path, label, confidence))
    return results, clusterer


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Group audio clips by speaker.")
    parser.add_argument("files", nargs="+", help="Audio files, one utterance each")
    parser.add_argument("--speakers", type=int, default=None, help="Expected number of speakers (1-10)")
    parser.add_argument("--max-frames", type=int, default=None, help="Analyser frames sampled per clip")
    args = parser.parse_args()

    missing = [f for f in args.files if not os.path.exists(f)]
    if missing:
        print(f"Error: File not found: {missing[0]}")
        sys.exit(1)

    ConfigManager.initialize()
    try:
        results, clusterer = identify_files(args.files, args.speakers, args.max_frames)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    for path, label, confidence in results:
        print(f"{path}: {label} ({round(confidence * 100)}%)")

    print("\nSpeakers:")
    for cluster in clusterer.get_clusters():
        centroid = cluster.centroid
        print(f"  {cluster.display_name}: {len(cluster.samples)} clips, "
              f"pitch {centroid.average_pitch:.0f}Hz (range {centroid.pitch_range:.0f}Hz)")
