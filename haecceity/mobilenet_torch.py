from typing import Optional

import cv2
import numpy as np
import torch

from common.interfaces import EmbeddingModel


class MobileNetTorch(EmbeddingModel):
    """
    Region embedder using torchvision's MobileNetV3-Small backbone.

    Why mobilenet_v3_small?
      - Same family as the browser embedder the learned samples were first built with.
      - Small enough to run per candidate per frame on CPU.
      - torchvision downloads ImageNet weights itself; no ONNX export needed.

    Output:
      - Pooled feature vector (D,) as np.float32; the matcher does cosine, so no
        normalization is applied here.

    Config keys:
      - weights: torchvision weights enum name (default: "IMAGENET1K_V1")
      - device: torch device string (default: "cpu")
    """

    name = "mobilenet_v3_small.torchvision"

    def __init__(self, cfg: dict):
        from torchvision import models

        self.device = torch.device(cfg.get("device", "cpu"))
        weights = cfg.get("weights", "IMAGENET1K_V1")
        self.model = models.mobilenet_v3_small(weights=weights)
        # drop the classifier head to expose pooled features
        self.model.classifier = torch.nn.Identity()
        self.model.eval().to(self.device)

        self.mean = np.array([0.485, 0.456, 0.406], dtype=np.float32)
        self.std = np.array([0.229, 0.224, 0.225], dtype=np.float32)

    def _preprocess(self, bgr: np.ndarray) -> torch.Tensor:
        rgb = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB).astype(np.float32) / 255.0
        rgb = (rgb - self.mean) / self.std
        x = np.transpose(rgb, (2, 0, 1))[None, ...]  # NCHW
        return torch.from_numpy(np.ascontiguousarray(x)).to(self.device)

    def embed(self, patch_bgr: np.ndarray) -> Optional[np.ndarray]:
        if patch_bgr.size == 0:
            return None
        x = self._preprocess(patch_bgr)
        with torch.no_grad():
            feat = self.model(x)  # shape: [1, D]
        e = feat.cpu().numpy().reshape(-1).astype(np.float32)
        return e if e.size else None
