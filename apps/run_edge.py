from __future__ import annotations

import argparse
import datetime
import logging
import os
import pathlib
import sys
import threading
import time
from typing import Callable, Iterable, List, Optional

import cv2
import numpy as np
import yaml
from paho.mqtt import client as mqtt

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from common.errors import HazardPipelineError
from common.events import Detection, HazardEvent, HazardType
from common.loader import instantiate
from common.overlay import draw_detections, draw_hud
from common.video_utils import open_source, to_bgr
from common.webviewer import OperatorConsole, WebViewer
from haecceity.recognizer import HazardRecognizer
from haecceity.region import RegionEmbedder
from mneme.store import LearnedSampleStore
from mneme.training import TrainingWorkflow, operator_rect
from quiddity.candidates import CandidateGenerator

LOGGER = logging.getLogger("haecceity.edge")

FrameCallback = Callable[[int, np.ndarray, List[Detection]], None]


class FrameLoop:
    """Pull a frame, run one matching pass, hand off the result, repeat.

    The next frame is only read after the current pass has produced its
    detections, so at most one pass is ever in flight and slow models simply
    lower the frame rate; nothing queues up.
    """

    def __init__(
        self,
        read_fn,
        recognizer: HazardRecognizer,
        *,
        fps: float = 0.0,
        assume_rgb: bool = False,
        on_frame: Optional[FrameCallback] = None,
    ):
        self.read_fn = read_fn
        self.recognizer = recognizer
        self.period = 1.0 / fps if fps > 0 else 0.0
        self.assume_rgb = assume_rgb
        self.on_frame = on_frame
        self.frame_idx = -1
        self._latest: Optional[np.ndarray] = None
        self._stop = threading.Event()

    @property
    def latest_frame(self) -> Optional[np.ndarray]:
        return self._latest

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Halt scheduling; the pass in progress (if any) still finishes."""

        self._stop.set()

    def step(self) -> Optional[List[Detection]]:
        """Process one frame. Returns ``None`` when the source is exhausted."""

        ok, frame = self.read_fn()
        if not ok:
            return None
        frame_bgr = to_bgr(frame, self.assume_rgb)
        if frame_bgr is None:
            LOGGER.warning("Received empty frame; skipping.")
            return []
        self.frame_idx += 1
        self._latest = frame_bgr
        try:
            detections = self.recognizer.process(frame_bgr)
        except Exception:
            LOGGER.exception("Matching pass failed on frame %d", self.frame_idx)
            detections = []
        if self.on_frame is not None:
            self.on_frame(self.frame_idx, frame_bgr, detections)
        return detections

    def run(self) -> int:
        processed = 0
        next_due = time.monotonic()
        while not self._stop.is_set():
            if self.period > 0:
                wait = next_due - time.monotonic()
                if wait > 0 and self._stop.wait(wait):
                    break
                next_due = time.monotonic() + self.period
            if self.step() is None:
                LOGGER.info("Frame source ended after %d frames.", processed)
                break
            processed += 1
        return processed


class EdgeConsole(OperatorConsole):
    """Operator actions against the latest frame the loop has seen."""

    def __init__(self, loop: FrameLoop, trainer: TrainingWorkflow, store: LearnedSampleStore):
        self.loop = loop
        self.trainer = trainer
        self.store = store

    def list_samples(self) -> list:
        return self.store.listing()

    def train(self, x: float, y: float, w: float, h: float) -> dict:
        frame = self.loop.latest_frame
        if frame is None:
            raise HazardPipelineError("No frame captured yet")
        sample = self.trainer.train(frame, operator_rect(x, y, w, h))
        return sample.listing()

    def delete(self, sample_id: str) -> bool:
        return self.store.delete(sample_id)


def _build(cfg):
    qcfg = cfg.get("quiddity", {}) or {}
    detector = instantiate(qcfg)
    LOGGER.info("Loaded detector: %s", qcfg["impl"])
    generator = CandidateGenerator(detector, qcfg)

    hcfg = cfg.get("haecceity", {}) or {}
    model = instantiate(hcfg.get("embedder") or {"impl": "haecceity.color_signature.ColorSignature"})
    LOGGER.info("Loaded embedder: %s", model.name)
    embedder = RegionEmbedder.from_config(model, hcfg)

    mcfg = cfg.get("mneme", {}) or {}
    store = LearnedSampleStore.from_config(mcfg)
    recognizer = HazardRecognizer.from_config(generator, embedder, store, hcfg)
    trainer = TrainingWorkflow.from_config(embedder, store, mcfg)
    return recognizer, trainer, store


def _connect_mqtt(url: Optional[str]):
    if not url:
        return None, None
    import urllib.parse as up

    parsed = up.urlparse(url)
    topic = parsed.path.lstrip("/") or "hazards"
    client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
    if parsed.scheme.startswith("mqtts"):
        client.tls_set()
    if parsed.username:
        client.username_pw_set(parsed.username, parsed.password or "")
    client.connect(
        parsed.hostname,
        parsed.port or (8883 if parsed.scheme.startswith("mqtts") else 1883),
        60,
    )
    client.loop_start()
    LOGGER.info("Connected to MQTT broker at %s", parsed.hostname)
    return client, topic


def main(argv: Optional[Iterable[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    parser = argparse.ArgumentParser(description="Hazard recognition edge loop")
    parser.add_argument("-c", "--config", required=True, help="Path to YAML config")
    args = parser.parse_args(list(argv) if argv is not None else None)

    with open(args.config, "r", encoding="utf-8") as fh:
        cfg = yaml.safe_load(fh)

    edge_cfg = cfg["edge"]
    cam_id = edge_cfg.get("cam_id", "cam0")
    recognizer, trainer, store = _build(cfg)
    try:
        store.load()
    except HazardPipelineError as exc:
        LOGGER.error("Memory bank unavailable at startup: %s", exc)

    emit_path = edge_cfg.get("emit_jsonl")
    output = None
    if emit_path:
        pathlib.Path(os.path.dirname(emit_path) or ".").mkdir(parents=True, exist_ok=True)
        output = open(emit_path, "a", buffering=1, encoding="utf-8")
        LOGGER.info("Writing hazard events to %s", emit_path)

    output_cfg = cfg.get("output", {}) or {}
    video_path = output_cfg.get("video_path")
    if video_path:
        pathlib.Path(os.path.dirname(video_path) or ".").mkdir(parents=True, exist_ok=True)
    draw_scores = bool(output_cfg.get("draw_scores", True))
    draw_diag = bool(output_cfg.get("draw_hud", True))
    hud_corner = output_cfg.get("hud_corner", "tl")
    hud_scale = float(output_cfg.get("hud_scale", 0.6))
    hud_opacity = float(output_cfg.get("hud_opacity", 0.6))
    video_out = None

    src = edge_cfg.get("source", 0)
    if isinstance(src, dict):
        src = src.get("device", src.get("path", 0))
    fps = float(edge_cfg.get("fps", 0.0))
    try:
        read_fn, close_fn, _, assume_rgb = open_source(src, fps)
    except SystemExit as exc:
        LOGGER.error(str(exc))
        store.close()
        return 1

    client, topic = _connect_mqtt(edge_cfg.get("mqtt"))
    fps_ema: Optional[float] = None
    t_prev: Optional[float] = None
    web_viewer: Optional[WebViewer] = None

    def on_frame(frame_idx: int, frame_bgr: np.ndarray, detections: List[Detection]) -> None:
        nonlocal video_out, fps_ema, t_prev
        height, width = frame_bgr.shape[:2]
        now = time.time()
        if t_prev is not None:
            inst_fps = 1.0 / max(1e-6, now - t_prev)
            fps_ema = inst_fps if fps_ema is None else 0.8 * fps_ema + 0.2 * inst_fps
        t_prev = now

        for det in detections:
            event = HazardEvent.build(int(now * 1000), cam_id, frame_idx, (width, height), det)
            line = event.to_json()
            if det.type is HazardType.LEARNED:
                LOGGER.info(
                    "Frame %d: trained hazard %s (%s) match=%.2f dist~%.1f",
                    frame_idx,
                    det.id,
                    det.sample_id,
                    det.match_score,
                    det.distance,
                )
            if output is not None:
                output.write(line + "\n")
            if client is not None and topic is not None:
                client.publish(topic, line, qos=0, retain=False)

        if not video_path and web_viewer is None:
            return
        vis = frame_bgr.copy()
        draw_detections(vis, detections, draw_scores=draw_scores)
        if draw_diag:
            draw_hud(
                vis,
                {
                    "cam_id": cam_id,
                    "img_wh": (width, height),
                    "ts_str": datetime.datetime.fromtimestamp(now).strftime("%H:%M:%S"),
                    "frame_idx": frame_idx,
                    "fps": fps_ema or 0.0,
                    "n_dets": len(detections),
                    "n_learned": sum(1 for d in detections if d.type is HazardType.LEARNED),
                    "n_samples": len(store.snapshot()),
                    "mode": store.mode.value,
                },
                corner=hud_corner,
                scale=hud_scale,
                opacity=hud_opacity,
            )
        if video_path and video_out is None:
            fourcc = cv2.VideoWriter_fourcc(*output_cfg.get("codec", "mp4v"))
            video_out = cv2.VideoWriter(
                video_path, fourcc, float(output_cfg.get("fps", fps or 5.0)), (width, height)
            )
            LOGGER.info("Writing annotated video to %s", video_path)
        if video_out is not None:
            video_out.write(vis)
        if web_viewer is not None:
            web_viewer.publish(vis)

    loop = FrameLoop(read_fn, recognizer, fps=fps, assume_rgb=assume_rgb, on_frame=on_frame)

    web_cfg = edge_cfg.get("web", {}) or {}
    if web_cfg.get("enabled", False):
        host = str(web_cfg.get("host", "0.0.0.0"))
        port = int(web_cfg.get("port", 8080))
        try:
            web_viewer = WebViewer(
                host=host,
                port=port,
                title=str(web_cfg.get("title") or f"{cam_id} hazards"),
                jpeg_quality=int(web_cfg.get("jpeg_quality", 80)),
                console=EdgeConsole(loop, trainer, store),
            )
        except OSError as exc:
            LOGGER.error("Failed to start web viewer: %s", exc)
            web_viewer = None
    else:
        LOGGER.info("Web viewer disabled; training is unavailable")

    try:
        loop.run()
    except KeyboardInterrupt:  # pragma: no cover - interactive stop
        LOGGER.info("Stopping edge loop (keyboard interrupt).")
    finally:
        loop.stop()
        if web_viewer is not None:
            web_viewer.close()
        store.close()
        if output is not None:
            output.close()
        if client is not None:
            client.loop_stop()
            client.disconnect()
        close_fn()
        if video_out is not None:
            video_out.release()

    return 0


if __name__ == "__main__":  # pragma: no cover - CLI guard
    sys.exit(main())
