"""MJPEG viewer plus the operator's memory-bank endpoints.

Routes:
  GET    /                 HTML page with the live stream and memory bank
  GET    /stream           multipart MJPEG of annotated frames
  GET    /samples          JSON listing of learned samples (no embeddings)
  POST   /train            JSON ``{"x", "y", "w", "h"}`` normalized rect on the latest frame
  DELETE /samples/<id>     remove a learned sample
"""

from __future__ import annotations

import json
import logging
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from socketserver import ThreadingMixIn
from typing import Optional
from urllib.parse import unquote

import cv2

from common.errors import EmbeddingUnavailable, HazardPipelineError, LocalStorageFailure, StoreClosed

LOGGER = logging.getLogger(__name__)


class _ThreadedHTTPServer(ThreadingMixIn, HTTPServer):
    daemon_threads = True


class OperatorConsole:
    """What the viewer needs from the app: listing, training and deletion."""

    def list_samples(self) -> list:
        raise NotImplementedError

    def train(self, x: float, y: float, w: float, h: float) -> dict:
        raise NotImplementedError

    def delete(self, sample_id: str) -> bool:
        raise NotImplementedError


def _status_for(exc: Exception) -> HTTPStatus:
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return HTTPStatus.BAD_REQUEST
    if isinstance(exc, EmbeddingUnavailable):
        return HTTPStatus.UNPROCESSABLE_ENTITY
    if isinstance(exc, StoreClosed):
        return HTTPStatus.SERVICE_UNAVAILABLE
    return HTTPStatus.INTERNAL_SERVER_ERROR


class WebViewer:
    """Serve a simple MJPEG stream and, with a console, the operator endpoints."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8080,
        *,
        title: str = "Neural Observer",
        jpeg_quality: int = 80,
        console: Optional[OperatorConsole] = None,
    ) -> None:
        self._frame: Optional[bytes] = None
        self._seq = 0
        self._cond = threading.Condition()
        self._title = title
        self._jpeg_quality = int(jpeg_quality)
        self._console = console
        self._running = True
        self._server = _ThreadedHTTPServer((host, port), self._make_handler())
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()
        LOGGER.info("Web viewer serving at http://%s:%d/", host, port)

    def _serve(self) -> None:
        try:
            self._server.serve_forever()
        except Exception:  # pragma: no cover - background server
            LOGGER.exception("Web viewer server crashed.")

    def _make_handler(self) -> type[BaseHTTPRequestHandler]:
        viewer = self

        class Handler(BaseHTTPRequestHandler):
            server_version = "NeuralObserver/0.1"

            def log_message(self, format: str, *args) -> None:  # noqa: D401 - Base override
                """Silence default stdout logging; forward to LOGGER."""

                LOGGER.debug("[web] %s - %s", self.client_address[0], format % args)

            def do_GET(self) -> None:  # noqa: D401 - Base override
                if self.path in ("/", "/index.html"):
                    self._serve_index()
                elif self.path.startswith("/stream"):
                    self._serve_stream()
                elif self.path.rstrip("/") == "/samples" and viewer._console is not None:
                    self._send_json(HTTPStatus.OK, {"samples": viewer._console.list_samples()})
                else:
                    self.send_error(HTTPStatus.NOT_FOUND, "Not Found")

            def do_POST(self) -> None:  # noqa: D401 - Base override
                if self.path.rstrip("/") != "/train" or viewer._console is None:
                    self.send_error(HTTPStatus.NOT_FOUND, "Not Found")
                    return
                try:
                    length = int(self.headers.get("Content-Length", 0))
                    body = json.loads(self.rfile.read(length) or b"{}")
                    sample = viewer._console.train(body["x"], body["y"], body["w"], body["h"])
                except (ValueError, KeyError, TypeError, HazardPipelineError) as exc:
                    self._fail(exc)
                    return
                self._send_json(HTTPStatus.CREATED, sample)

            def do_DELETE(self) -> None:  # noqa: D401 - Base override
                prefix = "/samples/"
                if not self.path.startswith(prefix) or viewer._console is None:
                    self.send_error(HTTPStatus.NOT_FOUND, "Not Found")
                    return
                sample_id = unquote(self.path[len(prefix) :])
                try:
                    removed = viewer._console.delete(sample_id)
                except HazardPipelineError as exc:
                    self._fail(exc)
                    return
                self._send_json(HTTPStatus.OK, {"id": sample_id, "removed": removed})

            def _fail(self, exc: Exception) -> None:
                status = _status_for(exc)
                log = LOGGER.error if isinstance(exc, LocalStorageFailure) else LOGGER.warning
                log("Operator request failed (%d): %s", status, exc)
                self._send_json(status, {"error": str(exc)})

            def _send_json(self, status: HTTPStatus, payload) -> None:
                data = json.dumps(payload).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(data)))
                self.end_headers()
                self.wfile.write(data)

            def _serve_index(self) -> None:
                html = f"""
                    <!doctype html>
                    <html lang=\"en\">
                      <head>
                        <meta charset=\"utf-8\" />
                        <title>{viewer._title}</title>
                        <style>
                          body {{
                            margin: 0;
                            background: #111;
                            color: #eee;
                            font-family: system-ui, sans-serif;
                            display: flex;
                            flex-direction: column;
                            align-items: center;
                          }}
                          header {{ padding: 1rem; font-size: 1.2rem; }}
                          img {{ width: 100%; height: auto; max-width: 960px; background: #000; }}
                          #bank img {{ width: 48px; height: 48px; margin: 2px; }}
                        </style>
                      </head>
                      <body>
                        <header>{viewer._title}</header>
                        <img src=\"/stream\" alt=\"Live stream\" />
                        <div id=\"bank\"></div>
                        <script>
                          fetch('/samples').then(r => r.json()).then(d => {{
                            const bank = document.getElementById('bank');
                            (d.samples || []).forEach(s => {{
                              const i = document.createElement('img');
                              i.src = s.thumbnail; i.title = s.id; bank.appendChild(i);
                            }});
                          }}).catch(() => {{}});
                        </script>
                      </body>
                    </html>
                """.strip().encode("utf-8")
                self.send_response(HTTPStatus.OK)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(html)))
                self.end_headers()
                self.wfile.write(html)

            def _serve_stream(self) -> None:
                boundary = "frame"
                self.send_response(HTTPStatus.OK)
                self.send_header(
                    "Content-Type", f"multipart/x-mixed-replace; boundary={boundary}"
                )
                self.end_headers()

                try:
                    for chunk in viewer._frame_generator():
                        self.wfile.write(b"--" + boundary.encode("ascii") + b"\r\n")
                        self.wfile.write(b"Content-Type: image/jpeg\r\n")
                        self.wfile.write(
                            f"Content-Length: {len(chunk)}\r\n\r\n".encode("ascii")
                        )
                        self.wfile.write(chunk)
                        self.wfile.write(b"\r\n")
                except BrokenPipeError:  # pragma: no cover - network interruption
                    LOGGER.debug("Client disconnected from stream.")

        return Handler

    @property
    def server_port(self) -> int:
        return self._server.server_address[1]

    def _frame_generator(self):
        last_seq = -1
        while True:
            with self._cond:
                while (self._frame is None or self._seq == last_seq) and self._running:
                    self._cond.wait()
                if not self._running:
                    return
                frame, last_seq = self._frame, self._seq
            yield frame

    def publish(self, frame) -> None:
        if not self._running:
            return
        ok, encoded = cv2.imencode(
            ".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self._jpeg_quality]
        )
        if not ok:
            LOGGER.warning("Failed to encode frame for web viewer.")
            return
        data = encoded.tobytes()
        with self._cond:
            self._frame = data
            self._seq += 1
            self._cond.notify_all()

    def close(self) -> None:
        self._running = False
        self._server.shutdown()
        self._server.server_close()
        with self._cond:
            self._frame = None
            self._cond.notify_all()
        if self._thread.is_alive():
            self._thread.join(timeout=1.0)
