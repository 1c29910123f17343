"""Dataclass configuration for the verification pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple, Type, TypeVar

from faceverify.io_utils import load_yaml

LOGGER = logging.getLogger("faceverify.config")

T = TypeVar("T")


@dataclass(frozen=True)
class DetectorRung:
    min_confidence: float
    input_size: int


DEFAULT_LADDER: Tuple[DetectorRung, ...] = (
    DetectorRung(0.5, 416),
    DetectorRung(0.4, 512),
    DetectorRung(0.3, 320),
    DetectorRung(0.2, 416),
)


@dataclass
class QualityConfig:
    selfie_floor: float = 15.0
    document_floor: float = 10.0


@dataclass
class PreprocessConfig:
    selfie_clip_limit: float = 2.0
    selfie_contrast: float = 1.15
    document_clip_limit: float = 2.5
    document_contrast: float = 1.3
    bilateral_sigma_space: float = 2.0
    bilateral_sigma_color: float = 25.0
    sharpen_amount: float = 0.3
    document_upscale: float = 3.5
    max_upscale_dim: int = 2000


@dataclass
class DetectionConfig:
    ladder: Tuple[DetectorRung, ...] = DEFAULT_LADDER
    precise_accept: float = 0.5
    fast_accept: float = 0.4
    # Re-detection on crops produced by the aligner
    crop_redetect_confidence: float = 0.3
    # Re-detection before describing each crop variant
    descriptor_redetect_confidence: float = 0.2


@dataclass
class DescriptorConfig:
    original_min_confidence: float = 0.4
    aligned_min_confidence: float = 0.3
    padding_min_confidence: float = 0.4
    paddings: Tuple[float, ...] = (0.15, 0.30, 0.40)
    aligned_padding: float = 0.25
    output_size: int = 224
    eye_angle_threshold: float = 0.02


@dataclass
class MatcherConfig:
    confidence_margin: float = 0.9


@dataclass
class DecisionPolicy:
    """Fusion weights, thresholds and override rules."""

    euclidean_midpoint: float = 0.40
    euclidean_steepness: float = 18.0
    euclidean_weight: float = 0.35
    cosine_weight: float = 0.20
    landmark_weight: float = 0.15
    structural_weight: float = 0.12
    texture_weight: float = 0.09
    histogram_weight: float = 0.09
    original_weight: float = 0.45
    ensemble_weight: float = 0.55
    pass_threshold: float = 20.0
    high_threshold: float = 80.0
    medium_threshold: float = 50.0
    override_enabled: bool = True
    override_min_agreement: int = 1
    high_agreement: int = 3
    medium_agreement: int = 2


@dataclass
class VerifierConfig:
    quality: QualityConfig = field(default_factory=QualityConfig)
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    descriptors: DescriptorConfig = field(default_factory=DescriptorConfig)
    matcher: MatcherConfig = field(default_factory=MatcherConfig)
    policy: DecisionPolicy = field(default_factory=DecisionPolicy)
    threads: int = 2
    precise_model: str = "buffalo_l"
    fast_model: str = "buffalo_s"
    recognition_model: Optional[str] = None
    providers: Optional[Tuple[str, ...]] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "VerifierConfig":
        data = dict(data or {})
        sections = {
            "quality": QualityConfig,
            "preprocess": PreprocessConfig,
            "detection": DetectionConfig,
            "descriptors": DescriptorConfig,
            "matcher": MatcherConfig,
            "policy": DecisionPolicy,
        }
        kwargs: Dict[str, Any] = {}
        for name, section_cls in sections.items():
            section = data.pop(name, None)
            if section is not None:
                kwargs[name] = _build_section(section_cls, section, name)
        kwargs.update(_known_fields(cls, data, "root", exclude=set(sections)))
        if kwargs.get("providers") is not None:
            kwargs["providers"] = tuple(kwargs["providers"])
        if "threads" in kwargs:
            kwargs["threads"] = _normalize_threads(kwargs["threads"])
        return cls(**kwargs)


def load_config(path: Optional[Path]) -> VerifierConfig:
    """Load a YAML config file; a missing path yields defaults."""
    if path is None:
        return VerifierConfig()
    if not path.exists():
        LOGGER.warning("Config %s not found; using defaults", path)
        return VerifierConfig()
    return VerifierConfig.from_dict(load_yaml(path))


def _build_section(section_cls: Type[T], values: Dict[str, Any], name: str) -> T:
    kwargs = _known_fields(section_cls, values, name)
    if section_cls is DetectionConfig and "ladder" in kwargs:
        kwargs["ladder"] = _parse_ladder(kwargs["ladder"])
    if section_cls is DescriptorConfig and "paddings" in kwargs:
        kwargs["paddings"] = tuple(float(p) for p in kwargs["paddings"])
    return section_cls(**kwargs)


def _known_fields(cls: type, values: Dict[str, Any], name: str, exclude: Optional[set] = None) -> Dict[str, Any]:
    allowed = {f.name for f in fields(cls)} - (exclude or set())
    unknown = sorted(set(values) - allowed)
    if unknown:
        LOGGER.warning("Ignoring unknown %s config keys: %s", name, unknown)
    return {key: value for key, value in values.items() if key in allowed}


def _parse_ladder(raw: Sequence[Any]) -> Tuple[DetectorRung, ...]:
    rungs = []
    for item in raw:
        if isinstance(item, DetectorRung):
            rungs.append(item)
        elif isinstance(item, dict):
            rungs.append(DetectorRung(float(item["min_confidence"]), int(item["input_size"])))
        else:
            min_conf, size = item
            rungs.append(DetectorRung(float(min_conf), int(size)))
    if not rungs:
        raise ValueError("Detector ladder must contain at least one rung")
    return tuple(rungs)


def _normalize_threads(value: Any) -> int:
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        return 1
