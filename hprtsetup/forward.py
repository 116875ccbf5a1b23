"""Forwarding a local port to the remote print service with socat."""

from __future__ import annotations

import subprocess
import time

from .config import Config, SetupError
from .socat import get_socat_path

STARTUP_WAIT_SECONDS = 2.0


def _lsof(*args: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["lsof", *args],
        capture_output=True,
        encoding="utf-8",
        errors="replace",
    )


def is_port_in_use(port: str) -> bool:
    """Return True if some process has ``port`` open."""
    try:
        return _lsof("-i", f":{port}").returncode == 0
    except OSError:
        return False


def stop_existing_port_forward(port: str) -> list[str]:
    """Kill the processes holding ``port``; return their process ids."""
    try:
        proc = _lsof("-t", "-i", f":{port}")
    except OSError:
        return []
    if proc.returncode != 0:
        return []
    pids = (proc.stdout or "").split()
    if pids:
        try:
            subprocess.run(
                ["kill", "-9", *pids],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError:
            pass
    return pids


def start_port_forward(cfg: Config) -> subprocess.Popen:
    """Start socat forwarding the local port to the remote host in the background.

    Returns the running socat process.
    """
    local_port = cfg.network.local_port
    remote_host = cfg.network.remote_host
    remote_port = cfg.network.remote_port

    try:
        socat = get_socat_path()
    except SetupError as exc:
        raise SetupError(f"socat不可用: {exc}") from exc
    print(f"📡 使用socat: {socat}")

    if is_port_in_use(local_port):
        print(f"⚠️ 端口 {local_port} 已被占用，尝试停止现有服务...")
        stop_existing_port_forward(local_port)

    listen = f"TCP-LISTEN:{local_port},fork"
    target = f"TCP:{remote_host}:{remote_port}"
    print(f"🔗 启动端口转发: {local_port} -> {remote_host}:{remote_port}")

    try:
        process = subprocess.Popen([socat, listen, target])
    except OSError as exc:
        raise SetupError(f"启动端口转发失败: {exc}") from exc

    time.sleep(STARTUP_WAIT_SECONDS)

    if not is_port_in_use(local_port):
        raise SetupError("端口转发启动后端口仍不可用")

    print(f"✅ 端口转发已启动，监听端口 {local_port}")
    return process