import socket
import sys
import tempfile
import unittest
import urllib.error
import urllib.request
from pathlib import Path
from unittest import mock

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "packages" / "telemetry"))
sys.path.insert(0, str(ROOT / "packages" / "surface"))
sys.path.insert(0, str(ROOT / "packages" / "core"))
sys.path.insert(0, str(ROOT / "packages" / "report"))

from glprobe_core.errors import ServerBindError
from glprobe_report.server import ContentServer, ResultServer

PAGE = "<!doctype html><html><body>report ✓</body></html>"


def _get(url: str):
    with urllib.request.urlopen(url, timeout=5) as resp:
        return resp.status, resp.headers.get("Content-Type"), resp.read().decode("utf-8")


class ResultServerTests(unittest.TestCase):
    def setUp(self):
        self.server = ResultServer(PAGE, host="127.0.0.1", port=0)
        self.server.start()

    def tearDown(self):
        self.server.shutdown()

    def test_root_and_index_serve_report(self):
        for path in ("", "index.html"):
            status, ctype, body = _get(self.server.url + path)
            self.assertEqual(status, 200)
            self.assertEqual(ctype, "text/html; charset=utf-8")
            self.assertEqual(body, PAGE)

    def test_query_string_is_ignored(self):
        status, _, _ = _get(self.server.url + "?refresh=1")
        self.assertEqual(status, 200)

    def test_other_paths_are_not_found(self):
        for path in ("gpu-metrics.json", "index.htm", "static/app.js"):
            with self.assertRaises(urllib.error.HTTPError) as ctx:
                _get(self.server.url + path)
            self.assertEqual(ctx.exception.code, 404)

    def test_port_zero_resolves_to_real_port(self):
        self.assertGreater(self.server.port, 0)
        self.assertIn(str(self.server.port), self.server.url)

    def test_open_viewer_is_best_effort(self):
        with mock.patch("glprobe_report.server.webbrowser.open_new_tab", return_value=False) as opener:
            self.assertFalse(self.server.open_viewer())
        opener.assert_called_once_with(self.server.url)


class BindFailureTests(unittest.TestCase):
    def test_port_in_use_raises_bind_error(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen(1)
            port = busy.getsockname()[1]
            server = ResultServer(PAGE, host="127.0.0.1", port=port)
            with self.assertRaises(ServerBindError):
                server.bind()

    def test_shutdown_without_start_is_a_no_op(self):
        ResultServer(PAGE, port=0).shutdown()


class ContentServerTests(unittest.TestCase):
    def test_serves_directory_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            (Path(tmp) / "index.html").write_text("<canvas></canvas>", encoding="utf-8")
            server = ContentServer(tmp, host="127.0.0.1", port=0)
            server.start()
            try:
                status, _, body = _get(server.url + "index.html")
            finally:
                server.shutdown()
        self.assertEqual(status, 200)
        self.assertEqual(body, "<canvas></canvas>")

    def test_missing_directory_is_rejected(self):
        with self.assertRaises(ServerBindError):
            ContentServer("/nonexistent/glprobe-content", port=0).bind()


if __name__ == "__main__":
    unittest.main()
