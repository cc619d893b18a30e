from typing import List, Tuple

import logging
import os
import pathlib
import shutil
import tempfile
import urllib.request

import numpy as np
from ultralytics import YOLO

from common.errors import DetectorUnavailable
from common.interfaces import BBox, Detector


LOGGER = logging.getLogger(__name__)


def _download_weights(url: str, destination: pathlib.Path) -> None:
    """Download a model artifact to ``destination`` atomically."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    LOGGER.info("Downloading detector weights from %s", url)
    tmp_name = None
    try:
        with urllib.request.urlopen(url) as response:
            with tempfile.NamedTemporaryFile(delete=False, dir=str(destination.parent)) as tmp_fh:
                shutil.copyfileobj(response, tmp_fh)
                tmp_name = tmp_fh.name
        os.replace(tmp_name, destination)
    except Exception:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class UltralyticsDetector(Detector):
    """Ultralytics YOLO wrapper; reports every class above ``conf_th``."""

    def __init__(self, cfg: dict):
        self.conf_th = float(cfg.get("conf_th", 0.15))
        model_name = cfg.get("model_name")
        model_path = cfg.get("model_path")
        model_url = cfg.get("model_url")

        if model_path and model_name:
            raise ValueError("Specify only one of 'model_path' or 'model_name'.")
        if model_url and not model_path:
            raise ValueError("'model_url' requires 'model_path' to be set.")

        if model_path:
            weights_path = pathlib.Path(model_path)
            if not weights_path.exists():
                if not model_url:
                    raise FileNotFoundError(
                        f"Model path '{weights_path}' does not exist and no 'model_url' was provided."
                    )
                _download_weights(str(model_url), weights_path)
            self.model = YOLO(str(weights_path))
        else:
            self.model = YOLO(str(model_name or "yolov8n.pt"))
        LOGGER.info("Loaded Ultralytics detector %s", model_path or model_name or "yolov8n.pt")

    def detect(self, frame_bgr: np.ndarray) -> List[Tuple[BBox, float, str]]:
        try:
            res = self.model.predict(frame_bgr, conf=self.conf_th, verbose=False)[0]
        except Exception as exc:
            raise DetectorUnavailable(f"Ultralytics detector failed: {exc}") from exc
        names = getattr(self.model, "names", {})
        out: List[Tuple[BBox, float, str]] = []
        for box in res.boxes:
            conf = float(box.conf.item())
            if conf < self.conf_th:
                continue
            cls_id = int(box.cls.item())
            x1, y1, x2, y2 = map(int, box.xyxy[0].tolist())
            out.append(((x1, y1, x2, y2), conf, names.get(cls_id, str(cls_id))))
        return out
