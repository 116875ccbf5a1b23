"""Verifying and installing the printer driver package."""

from __future__ import annotations

import hashlib
import os
import subprocess
from pathlib import Path

from .config import Config, SetupError
from .paths import resource_path

MIN_DRIVER_SIZE = 200 * 1024

DRIVER_DIRS = (
    "/Library/Printers/PPDs/Contents/Resources/",
    "/usr/share/cups/drv/",
    "/usr/share/cups/model/",
)


def _extension(name: str) -> str:
    dot = name.rfind(".")
    return name[dot:] if dot >= 0 else ""


def _locate_driver(cfg: Config) -> Path:
    try:
        path = resource_path(cfg.printer.driver_file)
    except OSError as exc:
        raise SetupError(f"无法定位驱动文件: {exc}") from exc
    if not path.exists():
        raise SetupError(f"驱动文件不存在: {path}")
    return path


def is_pkg_file(data: bytes) -> bool:
    """Loose sanity check on the leading bytes of an installer package."""
    return len(data) >= 4


def verify_driver(cfg: Config) -> str:
    """Check the driver package's name, size and readability.

    Returns the package's MD5 checksum as hex.
    """
    path = _locate_driver(cfg)
    print(f"📁 找到驱动文件: {path}")

    if _extension(path.name) != ".pkg":
        raise SetupError(f"驱动文件格式错误，应该是.pkg文件: {path}")

    try:
        size = path.stat().st_size
    except OSError as exc:
        raise SetupError(f"无法获取驱动文件信息: {exc}") from exc
    if size < MIN_DRIVER_SIZE:
        raise SetupError(f"驱动文件大小异常，可能文件损坏: {size} bytes")

    print(f"✅ 驱动文件验证成功 (大小: {size / (1024 * 1024):.2f} MB)")

    try:
        handle = path.open("rb")
    except OSError as exc:
        raise SetupError(f"无法打开驱动文件: {exc}") from exc

    digest = hashlib.md5()
    with handle:
        try:
            for chunk in iter(lambda: handle.read(65536), b""):
                digest.update(chunk)
        except OSError as exc:
            raise SetupError(f"无法计算驱动文件校验和: {exc}") from exc
        try:
            handle.seek(0)
            head = handle.read(512)
        except OSError as exc:
            raise SetupError(f"驱动文件无法读取: {exc}") from exc

    if not head:
        raise SetupError("驱动文件无法读取: EOF")
    if not is_pkg_file(head):
        raise SetupError("驱动文件格式无效，不是有效的pkg文件")
    return digest.hexdigest()


def is_driver_installed(cfg: Config) -> bool:
    """Return True if CUPS or a driver directory already knows an HPRT driver."""
    try:
        listing = subprocess.run(
            ["lpinfo", "-m"],
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            check=True,
        ).stdout
    except (OSError, subprocess.CalledProcessError):
        listing = ""
    if "hprt" in listing.lower():
        return True

    for directory in DRIVER_DIRS:
        try:
            names = os.listdir(directory)
        except OSError:
            continue
        if any("hprt" in name.lower() for name in names):
            return True
    return False


def install_driver(cfg: Config) -> None:
    """Install the driver package with administrator rights unless already present."""
    if is_driver_installed(cfg):
        print("HPRT驱动已安装，跳过此步骤")
        return

    package = _locate_driver(cfg).absolute()
    print(f"🔧 正在安装HPRT驱动: {package.name}")

    script = (
        f"do shell script \"installer -pkg '{package}' -target /\" "
        "with administrator privileges"
    )
    try:
        proc = subprocess.run(
            ["osascript", "-e", script],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as exc:
        raise SetupError(f"驱动安装失败: {exc}\n输出: ") from exc

    if proc.returncode != 0:
        output = proc.stdout or ""
        if "User canceled" in output:
            raise SetupError("用户取消了权限授权")
        raise SetupError(f"驱动安装失败: exit status {proc.returncode}\n输出: {output}")

    print("✅ HPRT驱动安装完成")