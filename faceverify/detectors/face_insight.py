"""InsightFace detection with 68-point landmarks."""

from __future__ import annotations

import logging
import os
import platform
import threading
from typing import Dict, Optional, Tuple

import numpy as np

from faceverify.detectors.base import DetectorConfig, DetectorVariant
from faceverify.types import FaceDetection, LandmarkSet

LOGGER = logging.getLogger("faceverify.detectors.face")

PRECISE_DET_SIZE = (640, 640)


def default_providers() -> Tuple[str, ...]:
    """Choose default ONNX providers for InsightFace models."""
    system = platform.system()
    machine = platform.machine().lower()
    if system == "Darwin" and machine in {"arm64", "aarch64"}:
        return ("CoreMLExecutionProvider", "CPUExecutionProvider")
    return ("CPUExecutionProvider",)


class InsightFaceDetector:
    """Wrapper around InsightFace FaceAnalysis exposing precise and fast variants."""

    def __init__(
        self,
        precise_model: str = "buffalo_l",
        fast_model: str = "buffalo_s",
        providers: Optional[Tuple[str, ...]] = None,
        ctx_id: int = 0,
    ) -> None:
        os.environ.setdefault("OMP_NUM_THREADS", "2")
        os.environ.setdefault("MKL_NUM_THREADS", "2")
        os.environ.setdefault("ORT_INTRA_OP_NUM_THREADS", "2")
        try:
            from insightface.app import FaceAnalysis
        except ImportError as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "insightface is required for InsightFaceDetector. "
                "Install it via `pip install insightface`."
            ) from exc

        self.providers = tuple(providers) if providers is not None else default_providers()
        self.ctx_id = ctx_id
        modules = ["detection", "landmark_3d_68"]
        self._apps = {
            DetectorVariant.PRECISE: FaceAnalysis(
                name=precise_model, allowed_modules=modules, providers=list(self.providers)
            ),
            DetectorVariant.FAST: FaceAnalysis(
                name=fast_model, allowed_modules=modules, providers=list(self.providers)
            ),
        }
        # (det_thresh, det_size) each app was last prepared with
        self._prepared: Dict[DetectorVariant, Tuple[float, Tuple[int, int]]] = {}
        self._lock = threading.Lock()
        for variant, app in self._apps.items():
            self._prepare(variant, app, 0.5, PRECISE_DET_SIZE)
        LOGGER.info(
            "Loaded InsightFace detectors precise=%s fast=%s providers=%s",
            precise_model,
            fast_model,
            self.providers,
        )

    @property
    def ready(self) -> bool:
        return all(variant in self._prepared for variant in self._apps)

    def _prepare(self, variant: DetectorVariant, app, det_thresh: float, det_size: Tuple[int, int]) -> None:
        key = (round(float(det_thresh), 4), det_size)
        if self._prepared.get(variant) == key:
            return
        app.prepare(ctx_id=self.ctx_id, det_thresh=float(det_thresh), det_size=det_size)
        self._prepared[variant] = key

    def detect(self, image: np.ndarray, config: DetectorConfig) -> Optional[FaceDetection]:
        """Run the configured variant and return the most confident face, if any."""
        if config.variant == DetectorVariant.PRECISE:
            det_size = PRECISE_DET_SIZE
        else:
            det_size = (int(config.input_size), int(config.input_size))
        app = self._apps[config.variant]
        with self._lock:
            self._prepare(config.variant, app, config.min_confidence, det_size)
            faces = app.get(image, max_num=1)

        best = None
        for face in faces:
            if getattr(face, "landmark_3d_68", None) is None:
                continue
            if best is None or float(face.det_score) > float(best.det_score):
                best = face
        if best is None:
            return None
        score = float(best.det_score)
        if score < config.min_confidence:
            return None
        bbox = tuple(float(v) for v in best.bbox)
        landmarks = LandmarkSet(np.asarray(best.landmark_3d_68, dtype=np.float64)[:, :2])
        return FaceDetection(bbox=bbox, score=score, landmarks=landmarks)  # type: ignore[arg-type]
