"""Error taxonomy raised by the verification pipeline."""

from __future__ import annotations

import threading
from typing import Optional, Sequence


class VerificationError(Exception):
    """Base class for errors that terminate a comparison."""


class ModelsNotLoaded(VerificationError):
    """Raised when a collaborator model is not ready at call entry."""

    def __init__(self, component: str = "models") -> None:
        super().__init__(f"Face models are not loaded ({component})")
        self.component = component


class QualityTooLow(VerificationError):
    """Raised when an input image scores below its quality floor."""

    def __init__(
        self,
        image: str,
        score: float,
        floor: float,
        issues: Sequence[str] = (),
        suggestions: Sequence[str] = (),
    ) -> None:
        advice = "; ".join(suggestions) or "better lighting and focus"
        message = f"{image.capitalize()} image quality too low ({score:.1f} < {floor:.1f})"
        if issues:
            message += f": {', '.join(issues)}"
        super().__init__(f"{message}; retake the {image} photo ({advice})")
        self.image = image
        self.score = score
        self.floor = floor
        self.issues = list(issues)
        self.suggestions = list(suggestions)


class NoFaceDetected(VerificationError):
    """Raised when every detector rung fails to find a face."""

    def __init__(self, image: str) -> None:
        super().__init__(f"No face detected in the {image} image")
        self.image = image


class ComparisonCancelled(VerificationError):
    """Raised at a collaborator boundary once cancellation was requested."""

    def __init__(self, stage: str = "") -> None:
        message = "Comparison cancelled"
        if stage:
            message = f"{message} before {stage}"
        super().__init__(message)
        self.stage = stage


def raise_if_cancelled(event: Optional[threading.Event], stage: str = "") -> None:
    if event is not None and event.is_set():
        raise ComparisonCancelled(stage)
