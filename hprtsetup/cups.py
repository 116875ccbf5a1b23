"""Configuring and inspecting the CUPS printing service."""

from __future__ import annotations

import ipaddress
import socket
import subprocess
import time
import urllib.request
from collections.abc import Iterator

from .config import Config, SetupError

CUPS_PORT = 631
CUPS_SERVICE = "org.cups.cupsd"
RESTART_WAIT_SECONDS = 3.0

_PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(net) for net in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16")
)

_CONFIGURE_SCRIPT = """
do shell script "cupsctl WebInterface=yes" with administrator privileges
do shell script "cupsctl --remote-admin --remote-any --share-printers" with administrator privileges
do shell script "launchctl stop org.cups.cupsd; launchctl start org.cups.cupsd" with administrator privileges
"""

_START_SCRIPT = (
    'do shell script "launchctl start org.cups.cupsd" with administrator privileges'
)


def _output(*args: str) -> str:
    return subprocess.run(
        list(args),
        capture_output=True,
        encoding="utf-8",
        errors="replace",
        check=True,
    ).stdout


def _succeeds(*args: str) -> bool:
    try:
        proc = subprocess.run(
            list(args), stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
        )
    except OSError:
        return False
    return proc.returncode == 0


def _osascript(script: str) -> tuple[str | None, str]:
    """Run an AppleScript; return (failure description or None, combined output)."""
    try:
        proc = subprocess.run(
            ["osascript", "-e", script],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as exc:
        return str(exc), ""
    output = proc.stdout or ""
    if proc.returncode != 0:
        return f"exit status {proc.returncode}", output
    return None, output


def _candidate_addresses() -> Iterator[str]:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
            probe.connect(("8.8.8.8", 80))
            yield probe.getsockname()[0]
    except OSError:
        pass
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    except OSError:
        infos = []
    for info in infos:
        yield info[4][0]


def local_ip() -> str:
    """Return this machine's private IPv4 address on the local network."""
    for text in _candidate_addresses():
        try:
            address = ipaddress.ip_address(text)
        except ValueError:
            continue
        if address.version != 4 or address.is_loopback:
            continue
        if any(address in net for net in _PRIVATE_NETWORKS):
            return str(address)
    raise SetupError("未找到有效的局域网IP地址")


def cups_reachable(ip: str) -> bool:
    """Return True if the CUPS web interface on ``ip`` answers with 200."""
    try:
        with urllib.request.urlopen(f"http://{ip}:{CUPS_PORT}", timeout=5) as resp:
            return resp.status == 200
    except (OSError, ValueError):
        return False


def parse_printers(output: str) -> list[str]:
    """Extract printer names from ``lpstat -p`` output."""
    printers = []
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("printer "):
            parts = line.split()
            if len(parts) >= 2:
                printers.append(parts[1])
    return printers


def installed_printers() -> list[str]:
    """Return the printers CUPS knows about."""
    try:
        return parse_printers(_output("lpstat", "-p"))
    except (OSError, subprocess.CalledProcessError) as exc:
        raise SetupError(str(exc)) from exc


def show_cups_status() -> str:
    """Print where CUPS and its shared printers can be reached; return the admin URL."""
    print("\n📊 ========== CUPS状态信息 ==========")

    try:
        ip = local_ip()
    except SetupError as exc:
        print(f"⚠️ 无法获取本机IP: {exc}")
        ip = "localhost"
    else:
        print(f"🌐 本机IP地址: {ip}")

    admin_url = f"http://{ip}:{CUPS_PORT}"
    print(f"🖥️ CUPS管理界面: {admin_url}")

    print("🔍 测试CUPS管理界面访问性...", end="")
    print(" ✅ 可访问" if cups_reachable(ip) else " ❌ 无法访问")

    try:
        printers = installed_printers()
    except SetupError as exc:
        print(f"⚠️ 获取打印机列表失败: {exc}")
    else:
        if printers:
            print("🖨️ 已安装的打印机:")
            for printer in printers:
                print(f"   • {printer}")
                print(f"     📡 共享地址: ipp://{ip}:{CUPS_PORT}/printers/{printer}")
                print(f"     🪟 Windows添加: http://{ip}:{CUPS_PORT}/printers/{printer}")
        else:
            print("ℹ️ 暂无已安装的打印机")

    print("\n💡 ========== 使用提示 ==========")
    print(f"1. 在浏览器中打开: {admin_url}")
    print("2. 在CUPS管理界面中添加和管理打印机")
    print("3. Windows电脑添加网络打印机时使用上述共享地址")
    print(f"4. 确保防火墙允许{CUPS_PORT}端口访问")
    return admin_url


def open_cups_admin() -> str:
    """Open the CUPS web interface in the default browser; return its URL."""
    try:
        ip = local_ip()
    except SetupError:
        ip = "localhost"
    url = f"http://{ip}:{CUPS_PORT}"
    print(f"🌐 正在打开CUPS管理界面: {url}")
    try:
        subprocess.run(["open", url], check=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise SetupError(str(exc)) from exc
    return url


def is_cups_running() -> bool:
    """Return True if launchd knows the CUPS daemon."""
    return _succeeds("launchctl", "list", CUPS_SERVICE)


def start_cups() -> None:
    """Start the CUPS daemon with administrator rights."""
    failure, output = _osascript(_START_SCRIPT)
    if failure is not None:
        if "User canceled" in output:
            raise SetupError("用户取消了权限授权")
        raise SetupError(f"启动失败: {failure}")


def is_cups_configured() -> bool:
    """Return True if the CUPS web interface is already enabled."""
    try:
        settings = _output("cupsctl")
    except (OSError, subprocess.CalledProcessError):
        return False
    return "WebInterface=yes" in settings


def restart_cups() -> None:
    """Stop and start the CUPS daemon through sudo."""
    _succeeds("sudo", "launchctl", "stop", CUPS_SERVICE)
    try:
        subprocess.run(["sudo", "launchctl", "start", CUPS_SERVICE], check=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise SetupError(str(exc)) from exc


def _report_status() -> None:
    try:
        show_cups_status()
    except SetupError as exc:
        print(f"⚠️ 获取CUPS状态时出错: {exc}")


def configure_cups(cfg: Config) -> None:
    """Enable the web interface and printer sharing, then report the status."""
    print("🖨️ ========== CUPS打印服务配置 ==========")

    if is_cups_configured():
        print("✅ CUPS已经配置完成")
        _report_status()
        return

    if not is_cups_running():
        print("🔄 CUPS服务未运行，正在启动...")
        try:
            start_cups()
        except SetupError as exc:
            raise SetupError(f"启动CUPS服务失败: {exc}") from exc
        print("✅ CUPS服务启动成功")

    print("🔧 配置CUPS共享设置...")
    failure, output = _osascript(_CONFIGURE_SCRIPT)
    if failure is not None:
        if "User canceled" in output:
            raise SetupError("用户取消了权限授权")
        raise SetupError(f"配置CUPS失败: {failure}\n输出: {output}")

    print("✅ CUPS配置完成")
    print("⏳ 等待CUPS服务重启...")
    time.sleep(RESTART_WAIT_SECONDS)
    _report_status()