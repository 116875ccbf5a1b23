import socket
import subprocess
import threading
import urllib.request
from datetime import datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from hprtsetup import connection
from hprtsetup.config import Config, NetworkSettings, SetupError, VpnSettings


def _make_server(status_for_clodop):
    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            status = status_for_clodop if self.path.startswith("/CLodopfuncs.js") else 404
            body = b"ok"
            self.send_response(status)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server, thread


@pytest.fixture
def clodop_port():
    server, thread = _make_server(200)
    yield server.server_address[1]
    server.shutdown()
    thread.join()
    server.server_close()


@pytest.fixture
def missing_clodop_port():
    server, thread = _make_server(404)
    yield server.server_address[1]
    server.shutdown()
    thread.join()
    server.server_close()


@pytest.fixture
def closed_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def no_fallbacks(monkeypatch):
    monkeypatch.setattr(connection, "FALLBACK_CLODOP_PORTS", ())


@pytest.fixture
def page_path(tmp_path, monkeypatch):
    path = tmp_path / "clodop_test.html"
    monkeypatch.setattr(connection, "TEST_PAGE_PATH", path)
    return path


@pytest.fixture
def opened(monkeypatch):
    calls = []

    def fake_run(args, *rest, **kwargs):
        calls.append(list(args))
        return subprocess.CompletedProcess(args, 0)

    monkeypatch.setattr(connection.subprocess, "run", fake_run)
    return calls


def _cfg(local_port, remote_host, remote_port):
    return Config(
        vpn=VpnSettings(name="office"),
        network=NetworkSettings(
            local_port=str(local_port),
            remote_host=remote_host,
            remote_port=str(remote_port),
        ),
    )


def test_render_test_print_page_fills_port_and_time():
    html = connection.render_test_print_page(8443, datetime(2024, 1, 2, 3, 4, 5))
    assert html.startswith("<!DOCTYPE html>")
    assert "'https://localhost:8443/CLodopfuncs.js?priority=1'" in html
    assert "'http://localhost:8443/CLodopfuncs.js'" in html
    assert html.count("localhost:8443") == 4
    assert "时间: 2024-01-02 03:04:05" in html
    assert "测试: 端口8443通信正常" in html
    assert "$" not in html


def test_render_browser_test_page_sets_port():
    html = connection.render_browser_test_page("8443")
    assert "var port = '8443';" in html
    assert "'http://localhost:' + port + '/CLodopfuncs'" in html
    assert "$" not in html


def test_create_test_print_page_writes_file(page_path):
    result = connection.create_test_print_page(9100)
    assert result == page_path
    content = page_path.read_text(encoding="utf-8")
    assert content.startswith("<!DOCTYPE html>")
    assert "端口9100通信正常" in content


def test_check_local_port_reaches_listener(clodop_port):
    peer = connection.check_local_port(str(clodop_port))
    assert peer[1] == clodop_port


def test_check_local_port_closed(closed_port):
    with pytest.raises(SetupError, match=f"无法连接到本地端口 {closed_port}"):
        connection.check_local_port(str(closed_port))


def test_check_remote_connection_reaches_listener(clodop_port):
    peer = connection.check_remote_connection("127.0.0.1", str(clodop_port))
    assert peer == ("127.0.0.1", clodop_port)


def test_check_remote_connection_closed(closed_port):
    with pytest.raises(SetupError, match=f"无法连接到远程主机 127.0.0.1:{closed_port}"):
        connection.check_remote_connection("127.0.0.1", str(closed_port))


def test_detect_clodop_port_finds_service(clodop_port, no_fallbacks):
    assert connection.detect_clodop_port(clodop_port) == clodop_port


def test_detect_clodop_port_skips_zero_and_uses_fallback(clodop_port, monkeypatch):
    monkeypatch.setattr(connection, "FALLBACK_CLODOP_PORTS", (clodop_port,))
    assert connection.detect_clodop_port(0) == clodop_port


def test_detect_clodop_port_rejects_non_200(missing_clodop_port, no_fallbacks):
    with pytest.raises(SetupError, match=f"尝试了端口: \\[{missing_clodop_port}\\]"):
        connection.detect_clodop_port(missing_clodop_port)


def test_send_test_page_serves_page_while_waiting(opened, monkeypatch):
    fetched = {}

    def fake_sleep(seconds):
        url = opened[-1][1]
        with urllib.request.urlopen(url, timeout=5) as resp:
            fetched["status"] = resp.status
            fetched["body"] = resp.read().decode("utf-8")

    monkeypatch.setattr(connection.time, "sleep", fake_sleep)
    url = connection.send_test_page("8443", "8000")
    assert opened == [["open", url]]
    assert url.startswith("http://localhost:") and url.endswith("/test")
    assert fetched["status"] == 200
    assert "var port = '8443';" in fetched["body"]


def test_send_test_page_open_failure(monkeypatch):
    def failing_run(args, *rest, **kwargs):
        raise subprocess.CalledProcessError(1, args)

    monkeypatch.setattr(connection.subprocess, "run", failing_run)
    with pytest.raises(SetupError, match="无法打开浏览器"):
        connection.send_test_page("8443", "8000")


def test_clodop_service_writes_and_opens_page(
    clodop_port, no_fallbacks, page_path, opened, monkeypatch
):
    monkeypatch.setattr(connection.time, "sleep", lambda seconds: None)
    result = connection.test_clodop_service(clodop_port)
    assert result == str(page_path)
    assert opened == [["open", str(page_path)]]
    assert f"端口{clodop_port}通信正常" in page_path.read_text(encoding="utf-8")


def test_clodop_service_without_service(missing_clodop_port, no_fallbacks):
    with pytest.raises(SetupError, match="Clodop服务检测失败"):
        connection.test_clodop_service(missing_clodop_port)


def test_connection_opens_print_page(
    clodop_port, no_fallbacks, page_path, opened, monkeypatch
):
    monkeypatch.setattr(connection.time, "sleep", lambda seconds: None)
    cfg = _cfg(clodop_port, "127.0.0.1", clodop_port)
    assert connection.test_connection(cfg) == str(page_path)
    assert opened == [["open", str(page_path)]]


def test_connection_falls_back_to_browser_page(
    missing_clodop_port, no_fallbacks, opened, monkeypatch
):
    bodies = []

    def fake_sleep(seconds):
        with urllib.request.urlopen(opened[-1][1], timeout=5) as resp:
            bodies.append(resp.read().decode("utf-8"))

    monkeypatch.setattr(connection.time, "sleep", fake_sleep)
    cfg = _cfg(missing_clodop_port, "127.0.0.1", missing_clodop_port)
    url = connection.test_connection(cfg)
    assert opened == [["open", url]]
    assert len(bodies) == 1
    assert "var port = '8443';" in bodies[0]


def test_connection_local_port_closed(closed_port):
    cfg = _cfg(closed_port, "127.0.0.1", closed_port)
    with pytest.raises(SetupError, match="本地端口测试失败"):
        connection.test_connection(cfg)


def test_connection_remote_closed(clodop_port, closed_port):
    cfg = _cfg(clodop_port, "127.0.0.1", closed_port)
    with pytest.raises(SetupError, match="远程连接测试失败"):
        connection.test_connection(cfg)