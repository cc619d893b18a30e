"""Frame sources: cameras, video files, Picamera2 and still images."""

from __future__ import annotations

import pathlib
import time

import cv2

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".bmp", ".webp"}


def to_bgr(frame, assume_rgb: bool = False):
    """Normalize frames from any source to a 3-channel BGR array."""
    if frame is None:
        return None
    if frame.ndim == 2:
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    if frame.ndim != 3:
        raise ValueError(f"Unexpected frame ndim={frame.ndim}, expected 2 or 3.")
    channels = frame.shape[2]
    if channels == 3:
        # Picamera2 RGB888 arrives as RGB; OpenCV captures are already BGR
        return cv2.cvtColor(frame, cv2.COLOR_RGB2BGR) if assume_rgb else frame
    if channels == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)
    raise ValueError(f"Unexpected channel count: {channels}, expected 1/3/4.")


def is_still_image(src) -> bool:
    return isinstance(src, str) and pathlib.Path(src).suffix.lower() in IMAGE_SUFFIXES


def open_source(src, fps):
    """Return ``(read_fn, close_fn, size_fn, assume_rgb)`` for a frame source."""

    if isinstance(src, str) and src.lower() == "picam":
        try:
            from picamera2 import Picamera2
        except Exception as exc:  # pragma: no cover - hardware dependency
            raise SystemExit(
                "Picamera2 not available. Install with: sudo apt install -y python3-picamera2"
            ) from exc

        picam = Picamera2()
        config = picam.create_video_configuration(
            main={"format": "RGB888", "size": (1280, 720)}
        )
        picam.configure(config)
        picam.start()
        time.sleep(0.3)
        height, width = picam.capture_array().shape[:2]

        def read_fn():
            return True, picam.capture_array()

        def close_fn():
            picam.stop()

        return read_fn, close_fn, lambda: (width, height), True

    if is_still_image(src):
        image = cv2.imread(src, cv2.IMREAD_COLOR)
        if image is None:
            raise SystemExit(f"Could not read image: {src}")
        height, width = image.shape[:2]
        state = {"served": False}

        def read_fn():
            # an uploaded still is analysed once
            if state["served"]:
                return False, None
            state["served"] = True
            return True, image

        return read_fn, lambda: None, lambda: (width, height), False

    cap = cv2.VideoCapture(src)
    if not cap.isOpened():
        raise SystemExit(f"Could not open source: {src}")
    width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
    height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))

    def read_fn():
        return cap.read()

    def close_fn():
        cap.release()

    return read_fn, close_fn, lambda: (width, height), False
