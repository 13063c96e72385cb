"""
Speaker identification for live meeting transcription.

Fingerprints each utterance from the live audio stream and clusters the
fingerprints into session speakers (Speaker 1, Speaker 2, ...).
"""

# Lazy imports so the clustering core loads without audio device libraries
_EXPORTS = {
    "AcousticFingerprint": ".fingerprint",
    "DistanceWeights": ".fingerprint",
    "fingerprint_distance": ".fingerprint",
    "ClusteringConfig": ".clustering",
    "SpeakerCluster": ".clustering",
    "SpeakerClusterer": ".clustering",
    "UNKNOWN_SPEAKER": ".clustering",
    "ExtractionConfig": ".features",
    "FeatureExtractor": ".features",
    "ArraySpectrumSource": ".capture",
    "LiveSpectrumSource": ".capture",
    "ProfileMatcher": ".profiles",
    "SpeakerLabeler": ".labeler",
    "LabelResult": ".labeler",
    "UtteranceSegmenter": ".segmenter",
    "Transcript": ".transcript",
    "TranscriptEntry": ".transcript",
}


def __getattr__(name):
    if name in _EXPORTS:
        from importlib import import_module
        module = import_module(_EXPORTS[name], __name__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = list(_EXPORTS)
