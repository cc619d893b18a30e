from __future__ import annotations

import logging
from typing import Optional

import cv2
import numpy as np
import onnxruntime as ort

from common.interfaces import EmbeddingModel

LOGGER = logging.getLogger(__name__)

IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)


class MobileNetORT(EmbeddingModel):
    """Image embedder backed by an ONNX export (e.g. MobileNetV3-Small, no head).

    Config keys:
      - model_path: ONNX file producing a ``(1, D)`` or ``(1, D, 1, 1)`` feature map
      - normalize: apply ImageNet mean/std (default: true)
    """

    name = "mobilenet.ort"

    def __init__(self, cfg: dict):
        self.model_path = cfg["model_path"]
        self.normalize = bool(cfg.get("normalize", True))
        self.session = ort.InferenceSession(self.model_path, providers=["CPUExecutionProvider"])
        self.input_name = self.session.get_inputs()[0].name
        self.output_name = self.session.get_outputs()[0].name
        LOGGER.info("Loaded ONNX embedder %s", self.model_path)

    def embed(self, patch_bgr: np.ndarray) -> Optional[np.ndarray]:  # type: ignore[override]
        if patch_bgr.size == 0:
            return None
        rgb = cv2.cvtColor(patch_bgr, cv2.COLOR_BGR2RGB).astype(np.float32) / 255.0
        if self.normalize:
            rgb = (rgb - IMAGENET_MEAN) / IMAGENET_STD
        x = np.transpose(rgb, (2, 0, 1))[None, ...].astype(np.float32)
        outputs = self.session.run([self.output_name], {self.input_name: x})
        if not outputs or outputs[0] is None:
            return None
        embedding = np.asarray(outputs[0], dtype=np.float32).flatten()
        return embedding if embedding.size else None
