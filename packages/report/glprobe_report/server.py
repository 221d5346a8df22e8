"""Local HTTP serving for the rendered report and for WebGL test content."""

from __future__ import annotations

import functools
import logging
import threading
import webbrowser
from http.server import BaseHTTPRequestHandler, SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import urlparse

from glprobe_core.errors import ServerBindError

logger = logging.getLogger("glprobe.report")

REPORT_PATHS = ("/", "/index.html")


def _make_report_handler(page: bytes):
    class ReportHandler(BaseHTTPRequestHandler):
        def _send(self, payload: bytes, content_type: str = "text/plain; charset=utf-8", status: int = 200):
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(payload)))
            self.send_header("Cache-Control", "no-store")
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(payload)

        def do_GET(self):
            if urlparse(self.path).path in REPORT_PATHS:
                self._send(page, "text/html; charset=utf-8")
                return
            self._send(b"Not Found", status=404)

        def do_HEAD(self):
            self.do_GET()

        def log_message(self, fmt, *args):
            logger.debug("http %s", fmt % args, extra={"event": "http_request"})

    return ReportHandler


class _ThreadedServer:
    """Bind once, then serve either blocking or from a daemon thread."""

    def __init__(self, host: str, port: int) -> None:
        self.host = host
        self.port = port
        self.httpd: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def _handler(self):
        raise NotImplementedError

    def bind(self) -> None:
        if self.httpd is not None:
            return
        try:
            self.httpd = ThreadingHTTPServer((self.host, self.port), self._handler())
        except OSError as exc:
            raise ServerBindError(f"could not bind {self.host}:{self.port}: {exc}") from exc
        # Port 0 asks the OS for a free port.
        self.port = int(self.httpd.server_address[1])
        logger.info("listening on %s", self.url, extra={"event": "server_bound"})

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/"

    def start(self) -> str:
        self.bind()
        assert self.httpd is not None
        self._thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)
        self._thread.start()
        return self.url

    def serve_forever(self) -> None:
        self.bind()
        assert self.httpd is not None
        try:
            self.httpd.serve_forever()
        finally:
            self.httpd.server_close()

    def shutdown(self) -> None:
        if self.httpd is None:
            return
        if self._thread is not None:
            self.httpd.shutdown()
            self._thread.join(timeout=5)
            self._thread = None
            self.httpd.server_close()
        self.httpd = None


class ResultServer(_ThreadedServer):
    """Serves one rendered report at ``/`` and ``/index.html``; everything else is 404."""

    def __init__(self, document_html: str, host: str = "127.0.0.1", port: int = 1234) -> None:
        super().__init__(host, port)
        self._page = document_html.encode("utf-8")

    def _handler(self):
        return _make_report_handler(self._page)

    def open_viewer(self) -> bool:
        try:
            return bool(webbrowser.open_new_tab(self.url))
        except webbrowser.Error as exc:
            logger.warning("could not open a browser: %s", exc, extra={"event": "viewer_open_failed"})
            return False


class ContentServer(_ThreadedServer):
    """Static file server for local WebGL test pages."""

    def __init__(self, directory: Path | str, host: str = "127.0.0.1", port: int = 9999) -> None:
        super().__init__(host, port)
        self.directory = Path(directory)

    def _handler(self):
        if not self.directory.is_dir():
            raise ServerBindError(f"content directory not found: {self.directory}")
        return functools.partial(SimpleHTTPRequestHandler, directory=str(self.directory))
