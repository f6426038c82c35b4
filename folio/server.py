"""Development server for Folio.

Serves the built site and the live reload helper on a single port:
- ``GET /js/folio-helper.js`` returns the helper script bound to this port.
- A request carrying ``Sec-WebSocket-Key`` is upgraded to a live reload
  session (see ``folio.livereload``).
- Any other GET serves a file from the build directory, with the helper
  script injected into HTML pages. Directory listings and missing paths get
  a 404 (serving 404.html when present).

Key classes:
- DevServer: Owns the HTTP server thread and the live reload sessions.
- _HelperHandler: Request handler for static files, the helper and upgrades.
"""

from __future__ import annotations

import functools
import socket
import threading
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import urlsplit

from .errors import ProtocolError
from .livereload import REFRESH, LiveReloadConnection, accept_key

HELPER_PATH = "/js/folio-helper.js"
HELPER_SOURCE = Path(__file__).parent / "helper" / "folio-helper.js"

# Clients heartbeat every 500ms; a silent socket this long is gone.
IDLE_TIMEOUT = 30.0


def helper_script(port: int) -> str:
    """Return the helper script with its ``$PORT`` token filled in."""
    return HELPER_SOURCE.read_text(encoding="utf-8").replace("$PORT", str(port))


def helper_tag(port: int) -> str:
    return f'<script src="http://localhost:{port}{HELPER_PATH}"></script>'


class _LiveReloadHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, handler, port: int):
        super().__init__(address, handler)
        self.helper_port = port or self.server_address[1]
        self.sessions: dict[LiveReloadConnection, socket.socket] = {}
        self.sessions_lock = threading.Lock()

    def register(self, connection: LiveReloadConnection, sock: socket.socket) -> None:
        with self.sessions_lock:
            self.sessions[connection] = sock

    def unregister(self, connection: LiveReloadConnection) -> None:
        with self.sessions_lock:
            self.sessions.pop(connection, None)


class _HelperHandler(SimpleHTTPRequestHandler):
    """Serves the build directory, the helper script and live reload upgrades."""

    protocol_version = "HTTP/1.1"
    server: _LiveReloadHTTPServer

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def do_GET(self):
        key = self.headers.get("Sec-WebSocket-Key")
        if key:
            self._upgrade(key)
            return
        if urlsplit(self.path).path == HELPER_PATH:
            self._send_text(200, helper_script(self.server.helper_port), "application/javascript")
            return
        super().do_GET()

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        return self._serve_404()

    def _send_text(self, status: int, content: str, content_type: str) -> None:
        encoded = content.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-type", f"{content_type}; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)

    def _inject(self, content: str) -> str:
        tag = helper_tag(self.server.helper_port)
        if "</body>" in content:
            return content.replace("</body>", f"{tag}</body>", 1)
        return content + tag

    def _serve_404(self):
        """Serve 404.html (when present) with the helper injected and a 404 status."""
        error_page = Path(self.directory) / "404.html"
        if error_page.is_file():
            self._send_text(404, self._inject(error_page.read_text(encoding="utf-8")), "text/html")
            return None
        self.send_error(404, "File not found")
        return None

    def send_head(self):
        path_obj = Path(self.translate_path(self.path))
        if path_obj.is_dir():
            path_obj = path_obj / "index.html"
        elif not path_obj.exists() and path_obj.with_name(f"{path_obj.name}.html").is_file():
            path_obj = path_obj.with_name(f"{path_obj.name}.html")
        if not path_obj.is_file():
            return self._serve_404()
        if path_obj.suffix == ".html":
            self._send_text(200, self._inject(path_obj.read_text(encoding="utf-8")), "text/html")
            return None
        return super().send_head()

    def _upgrade(self, key: str) -> None:
        self.send_response(101, "Switching Protocols")
        self.send_header("Upgrade", "websocket")
        self.send_header("Connection", "Upgrade")
        self.send_header("Sec-WebSocket-Accept", accept_key(key))
        self.end_headers()
        self.wfile.flush()
        self.close_connection = True
        self.connection.settimeout(IDLE_TIMEOUT)
        session = LiveReloadConnection(self.wfile)
        self.server.register(session, self.connection)
        try:
            session.serve(self.rfile)
        except ProtocolError as exc:
            self.log_message("closing live reload session: %s", exc)
        except OSError:
            # Client went away or stopped sending heartbeats.
            return
        finally:
            self.server.unregister(session)


class DevServer:
    """HTTP and live reload server for the build directory.

    Attributes:
        build_dir: Directory served to the browser.
        host: Interface to bind.
    """

    def __init__(self, build_dir: Path, port: int = 2701, host: str = "localhost"):
        """Initialize the dev server.

        Args:
            build_dir: Directory to serve.
            port: Port to listen on; 0 picks a free port.
            host: Interface to bind.
        """
        self.build_dir = build_dir
        self.host = host
        self._requested_port = port
        self._httpd: _LiveReloadHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        if self._httpd is not None:
            return self._httpd.server_address[1]
        return self._requested_port

    @property
    def connections(self) -> list[LiveReloadConnection]:
        if self._httpd is None:
            return []
        with self._httpd.sessions_lock:
            return list(self._httpd.sessions)

    def start(self) -> None:
        handler = functools.partial(_HelperHandler, directory=str(self.build_dir))
        self._httpd = _LiveReloadHTTPServer((self.host, self._requested_port), handler, self._requested_port)
        self._thread = threading.Thread(
            target=self._httpd.serve_forever, name="folio-server", daemon=True
        )
        self._thread.start()
        print(f"Serving {self.build_dir} at http://localhost:{self.port}")

    def stop(self) -> None:
        httpd = self._httpd
        if httpd is None:
            return
        httpd.shutdown()
        with httpd.sessions_lock:
            sockets = list(httpd.sessions.values())
        for sock in sockets:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                continue
        httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
        self._httpd = None
        self._thread = None

    def broadcast_refresh(self) -> int:
        """Tell every connected browser to reload.

        Returns:
            Number of sessions that received the message.
        """
        sent = 0
        for session in self.connections:
            try:
                session.send(REFRESH)
            except OSError:
                if self._httpd is not None:
                    self._httpd.unregister(session)
                continue
            sent += 1
        return sent
