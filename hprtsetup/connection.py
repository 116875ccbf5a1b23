"""Testing the forwarded connection to the remote print service."""

from __future__ import annotations

import http.client
import json
import socket
import ssl
import subprocess
import threading
import time
import urllib.request
from datetime import datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from string import Template

from .config import Config, SetupError

DEFAULT_CLODOP_PORT = "8443"
FALLBACK_CLODOP_PORTS = (8443, 8000, 8080, 9000)
CLODOP_PATHS = ("/CLodopfuncs.js?priority=1", "/CLodopfuncs.js", "/c_webskt/")
PROBE_TIMEOUT = 3.0
LOCAL_TIMEOUT = 5.0
REMOTE_TIMEOUT = 10.0
TEST_PAGE_PATH = Path("/tmp/clodop_test.html")
PAGE_WRITE_WAIT_SECONDS = 1.0
BROWSER_WAIT_SECONDS = 8.0
PAPER_SIZE = "80mm*120mm"
RULE = "=" * 32

_PRINT_PAGE = Template("""<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <title>HPRT打印机测试</title>
</head>
<body>
  <h2>HPRT打印机连接测试</h2>
  <div id="log"></div>
  <button onclick="startTest()">开始打印测试</button>
  <script>
    const SOURCES = $sources;
    const SLIP = $slip;
    const logBox = document.getElementById('log');

    function note(msg) {
      const line = new Date().toLocaleTimeString() + ': ' + msg;
      logBox.innerHTML += line + '<br>';
      console.log(line);
    }

    function findLodop() {
      if (typeof getCLodop === 'function') return [getCLodop(), 'getCLodop()'];
      if (typeof window.CLODOP !== 'undefined') return [window.CLODOP, 'window.CLODOP'];
      if (typeof window.LODOP !== 'undefined') return [window.LODOP, 'window.LODOP'];
      return [null, null];
    }

    function inspect() {
      try {
        const [lodop, via] = findLodop();
        if (!via) { note('❌ 未找到CLODOP对象'); return; }
        note('✅ 通过' + via + '获取到CLODOP对象');
        if (lodop && typeof lodop.PRINT_INIT === 'function') {
          note('✅ CLODOP对象验证成功，打印功能可用');
          note('📋 版本信息: ' + (lodop.VERSION || '未知'));
        } else {
          note('❌ CLODOP对象无效或缺少打印函数');
        }
      } catch (e) {
        note('❌ 检查CLODOP对象时出错: ' + e.message);
      }
    }

    function load(index) {
      if (index >= SOURCES.length) { note('❌ 所有Clodop脚本加载失败'); return; }
      const src = SOURCES[index];
      note('🔄 尝试加载: ' + src);
      const tag = document.createElement('script');
      tag.src = src;
      tag.onload = () => { note('✅ 脚本加载成功: ' + src); inspect(); };
      tag.onerror = () => { note('❌ 脚本加载失败: ' + src); setTimeout(() => load(index + 1), 500); };
      document.head.appendChild(tag);
    }

    function startTest() {
      try {
        const [lodop] = findLodop();
        if (!lodop) { note('❌ 无法获取CLODOP对象'); return; }
        note('🖨️ 开始执行打印测试...');
        lodop.PRINT_INIT('HPRT测试页');
        lodop.SET_PRINT_PAGESIZE(1, 0, 0, '$paper');
        SLIP.forEach(args => lodop.ADD_PRINT_TEXT.apply(lodop, args));
        const job = lodop.PRINT();
        if (job) {
          note('✅ 打印任务已发送，任务ID: ' + job);
          note('🎉 测试完成！请查看打印机输出');
        } else {
          note('❌ 打印任务发送失败');
        }
      } catch (e) {
        note('❌ 打印测试失败: ' + e.message);
      }
    }

    window.onload = () => { note('📄 页面加载完成，开始加载Clodop脚本'); load(0); };
  </script>
</body>
</html>""")

_BROWSER_PAGE = Template("""<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <title>HPRT打印测试</title>
</head>
<body>
  <div style="padding: 20px; font-family: Arial, sans-serif;">
    <h2>HPRT打印机测试页面</h2>
    <p>正在测试Clodop打印功能...</p>
    <div id="status">正在加载...</div>
    <div id="debug" style="margin-top: 20px; padding: 10px; background: #f0f0f0; font-family: monospace; font-size: 12px;"></div>
    <p><strong>如果看到这个页面，说明:</strong></p>
    <ul><li>✓ 网络连接正常</li><li>✓ 端口转发工作正常</li></ul>
    <p><em>注意: 请确保在远程Windows电脑上已安装并运行Clodop服务</em></p>
  </div>
  <script>
    const CLODOP_PORT = $port;
    const SOURCES = $sources;
    const JOB = $job;

    function debug(msg) {
      document.getElementById('debug').innerHTML += new Date().toLocaleTimeString() + ': ' + msg + '<br>';
    }

    function status(text, colour) {
      document.getElementById('status').innerHTML = '<span style="color: ' + colour + ';">' + text + '</span>';
    }

    function stamp() {
      const d = new Date();
      const two = n => String(n).padStart(2, '0');
      return d.getFullYear() + '-' + two(d.getMonth() + 1) + '-' + two(d.getDate()) + ' ' +
        two(d.getHours()) + ':' + two(d.getMinutes()) + ':' + two(d.getSeconds());
    }

    function printSlip() {
      try {
        debug('检查getLodop函数...');
        if (typeof getLodop === 'undefined') {
          status('❌ getLodop函数未定义', 'red');
          debug('getLodop函数未定义');
          return;
        }
        debug('调用getLodop()...');
        const lodop = getLodop();
        if (!lodop) {
          status('❌ 无法获取LODOP对象', 'red');
          debug('无法获取LODOP对象');
          return;
        }
        debug('LODOP对象获取成功');
        const now = stamp();
        JOB.forEach(([method, args]) => {
          const filled = args.map(a => typeof a === 'string' ? a.replace('%TIME%', now) : a);
          lodop[method].apply(lodop, filled);
        });
        debug('准备执行打印...');
        lodop.PRINT();
        status('✅ 打印命令已发送，请检查打印机是否出纸', 'green');
        debug('打印命令执行成功');
      } catch (e) {
        status('❌ 打印测试失败: ' + e.message, 'red');
        debug('异常: ' + e.message);
      }
    }

    function load(index) {
      if (index >= SOURCES.length) {
        status('❌ 无法加载Clodop脚本，所有URL都失败了', 'red');
        debug('所有Clodop URL都加载失败');
        return;
      }
      const src = SOURCES[index];
      debug('尝试加载: ' + src);
      const tag = document.createElement('script');
      tag.type = 'text/javascript';
      tag.src = src;
      tag.onload = () => { debug('脚本加载成功: ' + src); setTimeout(printSlip, 1000); };
      tag.onerror = () => { debug('脚本加载失败: ' + src); setTimeout(() => load(index + 1), 500); };
      document.head.appendChild(tag);
    }

    window.onload = () => { debug('页面加载完成，开始加载Clodop脚本 (端口 ' + CLODOP_PORT + ')'); load(0); };
  </script>
</body>
</html>""")


def _js(value: object) -> str:
    return json.dumps(value, ensure_ascii=False)


def _run_command(*args: str) -> None:
    try:
        subprocess.run(list(args), check=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise SetupError(str(exc)) from exc


def _probe_opener() -> urllib.request.OpenerDirector:
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return urllib.request.build_opener(urllib.request.HTTPSHandler(context=context))


def _answers_ok(opener: urllib.request.OpenerDirector, url: str) -> bool:
    try:
        with opener.open(url, timeout=PROBE_TIMEOUT) as resp:
            return resp.status == 200
    except (OSError, http.client.HTTPException, ValueError):
        return False


def check_local_port(port: str) -> tuple:
    """Connect to ``port`` on localhost; return the peer address reached."""
    try:
        with socket.create_connection(("localhost", port), timeout=LOCAL_TIMEOUT) as conn:
            return conn.getpeername()
    except OSError as exc:
        raise SetupError(f"无法连接到本地端口 {port}: {exc}") from exc


def check_remote_connection(host: str, port: str) -> tuple:
    """Connect to ``host:port``; return the peer address reached."""
    try:
        with socket.create_connection((host, port), timeout=REMOTE_TIMEOUT) as conn:
            return conn.getpeername()
    except OSError as exc:
        raise SetupError(f"无法连接到远程主机 {host}:{port}: {exc}") from exc


def detect_clodop_port(user_port: int) -> int:
    """Find the port on localhost where the print service answers.

    The user's port is tried first, then the usual fallbacks; ports that are
    not positive are skipped.
    """
    candidates = (user_port, *FALLBACK_CLODOP_PORTS)
    opener = _probe_opener()

    for port in candidates:
        if port <= 0:
            continue
        print(f"🔍 尝试端口 {port}...")
        for scheme in ("https", "http"):
            for path in CLODOP_PATHS:
                url = f"{scheme}://localhost:{port}{path}"
                if _answers_ok(opener, url):
                    print(f"✅ 发现Clodop服务: {url}")
                    return port

    tried = " ".join(str(port) for port in candidates)
    raise SetupError(f"未找到可用的Clodop服务端口，尝试了端口: [{tried}]")


def render_test_print_page(port: int, now: datetime) -> str:
    """Return the HTML page that loads the print service and prints a test slip."""
    sources = [
        f"{scheme}://localhost:{port}/CLodopfuncs.js{query}"
        for scheme in ("https", "http")
        for query in ("?priority=1", "")
    ]
    slip = [
        [50, 10, 200, 30, "HPRT打印机测试"],
        [100, 10, 300, 20, f"时间: {now:%Y-%m-%d %H:%M:%S}"],
        [130, 10, 300, 20, "状态: 打印机工作正常"],
        [160, 10, 300, 20, "配置: 网络连接已建立"],
        [190, 10, 300, 20, f"测试: 端口{port}通信正常"],
    ]
    return _PRINT_PAGE.substitute(sources=_js(sources), slip=_js(slip), paper=PAPER_SIZE)


def create_test_print_page(port: int) -> Path:
    """Write the test print page to its fixed location and return that path."""
    TEST_PAGE_PATH.write_text(render_test_print_page(port, datetime.now()), encoding="utf-8")
    return TEST_PAGE_PATH


def render_browser_test_page(clodop_port: str | int) -> str:
    """Return the browser page that tries to print through the given service port."""
    base = f"localhost:{clodop_port}"
    sources = [
        f"https://{base}/CLodopfuncs.js?priority=1",
        f"https://{base}/CLodopfuncs.js",
        f"http://{base}/CLodopfuncs.js",
        f"http://{base}/CLodopfuncs",
    ]

    def text(top: int, left: int, width: int, height: int, content: str) -> list:
        return ["ADD_PRINT_TEXT", [top, left, width, height, content]]

    def style(name: str, value: object) -> list:
        return ["SET_PRINT_STYLEA", [0, name, value]]

    job = [
        ["PRINT_INIT", ["HPRT测试页"]],
        ["SET_PRINT_PAGESIZE", [1, 0, 0, PAPER_SIZE]],
        text(20, 50, 200, 30, "HPRT打印机测试页"),
        style("FontName", "微软雅黑"),
        style("FontSize", 14),
        style("Bold", 1),
        text(50, 20, 240, 20, RULE),
        text(80, 50, 200, 20, "✓ 打印机工作正常！"),
        style("FontSize", 12),
        text(110, 50, 200, 20, "✓ VPN连接正常"),
        text(130, 50, 200, 20, "✓ 端口转发正常"),
        text(150, 50, 200, 20, "✓ 网络通信正常"),
        text(180, 50, 200, 20, "测试时间: %TIME%"),
        style("FontSize", 10),
        text(210, 50, 200, 20, "配置工具版本: 1.0"),
        text(240, 20, 240, 20, RULE),
    ]
    return _BROWSER_PAGE.substitute(
        port=_js(str(clodop_port)), sources=_js(sources), job=_js(job)
    )


def _page_handler(page: bytes) -> type[BaseHTTPRequestHandler]:
    class _Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            if self.path.split("?", 1)[0] != "/test":
                self.send_error(404)
                return
            self.send_response(200)
            self.send_header("Content-Type", "text/html; charset=utf-8")
            self.send_header("Content-Length", str(len(page)))
            self.end_headers()
            self.wfile.write(page)

        def log_message(self, format: str, *args) -> None:
            pass

    return _Handler


def send_test_page(clodop_port: str, local_port: str) -> str:
    """Serve the browser test page briefly and open it; return its URL."""
    page = render_browser_test_page(clodop_port).encode("utf-8")
    try:
        server = ThreadingHTTPServer(("", 0), _page_handler(page))
    except OSError as exc:
        raise SetupError(f"无法启动测试服务器: {exc}") from exc

    with server:
        url = f"http://localhost:{server.server_address[1]}/test"
        worker = threading.Thread(target=server.serve_forever, daemon=True)
        worker.start()
        try:
            print(f"📱 打开浏览器测试页面: {url}")
            try:
                _run_command("open", url)
            except SetupError as exc:
                raise SetupError(f"无法打开浏览器: {exc}") from exc
            time.sleep(BROWSER_WAIT_SECONDS)
        finally:
            server.shutdown()
            worker.join()
    return url


def test_clodop_service(local_port: int) -> str:
    """Find the print service, write the test page and open it; return the page path."""
    try:
        port = detect_clodop_port(local_port)
    except SetupError as exc:
        raise SetupError(f"Clodop服务检测失败: {exc}") from exc
    print(f"✅ Clodop服务响应正常 (端口: {port})")

    try:
        page = create_test_print_page(port)
    except OSError as exc:
        raise SetupError(f"创建打印测试页失败: {exc}") from exc

    print("📄 已创建测试打印页面，即将在浏览器中打开...")
    time.sleep(PAGE_WRITE_WAIT_SECONDS)
    _run_command("open", str(page))
    return str(page)


def test_connection(cfg: Config) -> str:
    """Check the forwarded and remote ports, then open a print test page.

    Returns the location of the page that was opened.
    """
    local_port = cfg.network.local_port
    remote_host = cfg.network.remote_host
    remote_port = cfg.network.remote_port

    print("🔗 测试网络连接...")
    try:
        check_local_port(local_port)
    except SetupError as exc:
        raise SetupError(f"本地端口测试失败: {exc}") from exc
    print("✅ 本地端口连接正常")

    try:
        check_remote_connection(remote_host, remote_port)
    except SetupError as exc:
        raise SetupError(f"远程连接测试失败: {exc}") from exc
    print("✅ 远程连接正常")

    print("🖨️ 检测Clodop服务...")
    try:
        port_number = int(local_port) if local_port else 0
    except ValueError:
        port_number = 0

    try:
        clodop_port = detect_clodop_port(port_number)
    except SetupError as exc:
        print(f"⚠️ Clodop服务检测失败: {exc}")
        print("💡 这可能是因为:")
        print("   - 远程Windows电脑上Clodop服务未运行")
        print("   - 打印机未连接或未开机")
        print("   - VPN连接不稳定")
        print("   - 端口转发配置有问题")
        print("⚠️ 继续尝试发送测试页...")
        return send_test_page(DEFAULT_CLODOP_PORT, local_port)

    print(f"✅ Clodop服务响应正常 (端口: {clodop_port})")
    return test_clodop_service(clodop_port)