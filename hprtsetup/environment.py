"""Checks that the machine can be configured."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path

from .config import Config, SetupError

_PROBE_NAME = "test_permission.tmp"


def _output(*args: str) -> str:
    return subprocess.run(
        list(args),
        capture_output=True,
        encoding="utf-8",
        errors="replace",
        check=True,
    ).stdout


def is_valid_macos_version(version: str) -> bool:
    """Return True for macOS 10.13 through 14."""
    parts = version.split(".")
    if len(parts) < 2:
        return False
    if parts[0] in {"11", "12", "13", "14"}:
        return True
    return parts[0] == "10" and parts[1] in {"13", "14", "15"}


def check_environment(cfg: Config) -> str:
    """Check system, version, admin rights, network and write access.

    Returns the detected macOS version.
    """
    if sys.platform != "darwin":
        raise SetupError(f"此程序仅支持macOS系统，当前系统: {sys.platform}")

    try:
        version = _output("sw_vers", "-productVersion").strip()
    except (OSError, subprocess.CalledProcessError) as exc:
        raise SetupError(f"无法获取macOS版本: {exc}") from exc
    if not is_valid_macos_version(version):
        raise SetupError(f"macOS版本过低，需要10.13.6或更高版本，当前版本: {version}")

    try:
        groups = _output("id", "-Gn").split()
    except (OSError, subprocess.CalledProcessError) as exc:
        raise SetupError(f"无法检查用户权限: {exc}") from exc
    if "admin" not in groups:
        raise SetupError("当前用户不是管理员，无法执行系统配置")

    try:
        subprocess.run(
            ["ping", "-c", "1", "8.8.8.8"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise SetupError("网络连接检查失败，请确保网络正常") from exc

    try:
        probe = Path.cwd() / _PROBE_NAME
    except OSError as exc:
        raise SetupError(f"无法获取当前工作目录: {exc}") from exc
    try:
        probe.open("w").close()
    except OSError as exc:
        raise SetupError(f"当前目录没有写入权限: {exc}") from exc
    probe.unlink(missing_ok=True)

    return version