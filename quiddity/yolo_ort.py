from __future__ import annotations

from typing import List, Tuple

import cv2
import numpy as np
import onnxruntime as ort

from common.errors import DetectorUnavailable
from common.interfaces import BBox, Detector

COCO_NAMES = (
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train", "truck",
    "boat", "traffic light", "fire hydrant", "stop sign", "parking meter", "bench",
    "bird", "cat", "dog", "horse", "sheep", "cow", "elephant", "bear", "zebra",
    "giraffe", "backpack", "umbrella", "handbag", "tie", "suitcase", "frisbee",
    "skis", "snowboard", "sports ball", "kite", "baseball bat", "baseball glove",
    "skateboard", "surfboard", "tennis racket", "bottle", "wine glass", "cup",
    "fork", "knife", "spoon", "bowl", "banana", "apple", "sandwich", "orange",
    "broccoli", "carrot", "hot dog", "pizza", "donut", "cake", "chair", "couch",
    "potted plant", "bed", "dining table", "toilet", "tv", "laptop", "mouse",
    "remote", "keyboard", "cell phone", "microwave", "oven", "toaster", "sink",
    "refrigerator", "book", "clock", "vase", "scissors", "teddy bear",
    "hair drier", "toothbrush",
)


def _letterbox(im: np.ndarray, new_side: int) -> Tuple[np.ndarray, float, Tuple[int, int]]:
    height, width = im.shape[:2]
    ratio = min(new_side / height, new_side / width)
    new_h, new_w = int(round(height * ratio)), int(round(width * ratio))
    resized = cv2.resize(im, (new_w, new_h), interpolation=cv2.INTER_LINEAR)
    top = (new_side - new_h) // 2
    left = (new_side - new_w) // 2
    out = cv2.copyMakeBorder(
        resized,
        top,
        new_side - new_h - top,
        left,
        new_side - new_w - left,
        cv2.BORDER_CONSTANT,
        value=(114, 114, 114),
    )
    return out, ratio, (left, top)


class YOLOv8ORT(Detector):
    """YOLOv8 ONNX export run through ONNX Runtime on CPU.

    Expects the stock ``(1, 4 + C, N)`` output head with no objectness column.
    Every class is reported; coarse hazard classification happens downstream.
    """

    def __init__(self, cfg: dict):
        self.model_path = cfg["model_path"]
        self.img_size = int(cfg.get("img_size", 640))
        self.conf_th = float(cfg.get("conf_th", 0.15))
        self.iou_th = float(cfg.get("iou_th", 0.5))
        self.names = list(cfg.get("class_names") or COCO_NAMES)
        self.session = ort.InferenceSession(self.model_path, providers=["CPUExecutionProvider"])
        self.input_name = self.session.get_inputs()[0].name
        self.output_name = self.session.get_outputs()[0].name

    def detect(self, frame_bgr: np.ndarray) -> List[Tuple[BBox, float, str]]:
        rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        img, ratio, (dx, dy) = _letterbox(rgb, self.img_size)
        x = np.transpose(img.astype(np.float32) / 255.0, (2, 0, 1))[None, ...]
        try:
            predictions = self.session.run([self.output_name], {self.input_name: x})[0]
        except Exception as exc:
            raise DetectorUnavailable(f"ONNX detector failed: {exc}") from exc
        predictions = np.squeeze(predictions, axis=0).T  # (N, 4 + C)

        class_scores = predictions[:, 4:]
        class_ids = class_scores.argmax(1)
        confidences = class_scores.max(1)
        keep_mask = confidences >= self.conf_th
        if not keep_mask.any():
            return []

        frame_h, frame_w = frame_bgr.shape[:2]
        results: List[Tuple[BBox, float, str]] = []
        for (cx, cy, w, h), score, cid in zip(
            predictions[keep_mask, :4], confidences[keep_mask], class_ids[keep_mask]
        ):
            x1 = int(max(0, min(frame_w - 1, (cx - w / 2 - dx) / ratio)))
            y1 = int(max(0, min(frame_h - 1, (cy - h / 2 - dy) / ratio)))
            x2 = int(max(0, min(frame_w - 1, (cx + w / 2 - dx) / ratio)))
            y2 = int(max(0, min(frame_h - 1, (cy + h / 2 - dy) / ratio)))
            if x2 <= x1 or y2 <= y1:
                continue
            cid = int(cid)
            label = self.names[cid] if cid < len(self.names) else str(cid)
            results.append(((x1, y1, x2, y2), float(score), label))

        if not results:
            return results

        boxes_xywh = [[b[0], b[1], b[2] - b[0], b[3] - b[1]] for b, _, _ in results]
        scores = [s for _, s, _ in results]
        keep = cv2.dnn.NMSBoxes(boxes_xywh, scores, self.conf_th, self.iou_th)
        if len(keep) == 0:
            return []
        keep_indices = [int(k[0]) if isinstance(k, (list, tuple, np.ndarray)) else int(k) for k in keep]
        return [results[i] for i in keep_indices]
