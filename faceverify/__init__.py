"""
Selfie-vs-document face verification engine.

Quality gating, multi-pass detection, ArcFace descriptors and score fusion.
"""

__all__ = [
    "alignment",
    "config",
    "detectors",
    "errors",
    "fusion",
    "io_utils",
    "metrics",
    "preprocess",
    "quality",
    "recognition",
    "types",
    "verifier",
]
