"""Finding and connecting the configured VPN service."""

from __future__ import annotations

import subprocess
import time
from collections.abc import Iterable

from .config import Config, SetupError

CONNECT_ATTEMPTS = 30
FAIL_AFTER_ATTEMPT = 5

_NON_VPN_MARKERS = ("wi-fi", "ethernet", "ax88179a", "xreal")


def parse_network_services(output: str) -> list[str]:
    """Pick the likely VPN services from ``networksetup -listallnetworkservices``."""
    services = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("An asterisk"):
            continue
        lowered = line.lower()
        if not any(marker in lowered for marker in _NON_VPN_MARKERS):
            services.append(line)
    return services


def available_vpns() -> list[str]:
    """Return the VPN services configured on this machine."""
    try:
        output = subprocess.run(
            ["networksetup", "-listallnetworkservices"],
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            check=True,
        ).stdout
    except (OSError, subprocess.CalledProcessError) as exc:
        raise SetupError(f"无法获取VPN列表: {exc}") from exc
    return parse_network_services(output)


def find_matching_vpn(target: str, available: Iterable[str]) -> str | None:
    """Find ``target`` among service names: exact, ignoring case, ignoring spaces, then substring."""
    candidates = list(available)
    target_lower = target.lower()
    target_compact = target.replace(" ", "").lower()

    tests = (
        lambda vpn: vpn == target,
        lambda vpn: vpn.lower() == target_lower,
        lambda vpn: vpn.replace(" ", "").lower() == target_compact,
        lambda vpn: target_lower in vpn.lower(),
    )
    for matches in tests:
        for vpn in candidates:
            if matches(vpn):
                return vpn
    return None


def _scutil_status(name: str) -> str | None:
    try:
        return subprocess.run(
            ["scutil", "--nc", "status", name],
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            check=True,
        ).stdout
    except (OSError, subprocess.CalledProcessError):
        return None


def vpn_status(name: str) -> str:
    """Return the status report of a VPN service, or "Unknown"."""
    status = _scutil_status(name)
    return "Unknown" if status is None else status


def is_vpn_connected(name: str) -> bool:
    """Return True if the VPN service reports itself connected."""
    status = _scutil_status(name)
    return status is not None and "Connected" in status


def disconnect_vpn(name: str) -> None:
    """Disconnect a VPN service."""
    try:
        proc = subprocess.run(
            ["networksetup", "-disconnectpppoeservice", name],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as exc:
        raise SetupError(f"断开VPN失败: {exc}\n输出: ") from exc
    if proc.returncode != 0:
        raise SetupError(
            f"断开VPN失败: exit status {proc.returncode}\n输出: {proc.stdout or ''}"
        )


def connect_vpn(cfg: Config) -> str:
    """Connect the configured VPN and wait for it; return the service name used."""
    wanted = cfg.vpn.name
    if not wanted:
        raise SetupError("配置文件中未指定VPN名称")

    vpns = available_vpns()
    if not vpns:
        raise SetupError("系统中没有配置任何VPN连接")

    actual = find_matching_vpn(wanted, vpns)
    if actual is None:
        print(f"❌ 找不到VPN '{wanted}'")
        print("📋 系统中可用的VPN列表:")
        for number, vpn in enumerate(vpns, start=1):
            print(f"  {number}. {vpn}")
        raise SetupError(f"VPN '{wanted}' 不存在，请检查配置文件中的VPN名称")

    if actual != wanted:
        print(f"💡 找到匹配VPN: '{wanted}' -> '{actual}'")

    if is_vpn_connected(actual):
        print(f"✅ VPN '{actual}' 已连接，跳过此步骤")
        return actual

    print(f"🔗 正在连接VPN '{actual}'...")
    try:
        proc = subprocess.run(
            ["networksetup", "-connectpppoeservice", actual],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as exc:
        raise SetupError(f"无法连接VPN '{actual}': {exc}\n输出: ") from exc
    if proc.returncode != 0:
        raise SetupError(
            f"无法连接VPN '{actual}': exit status {proc.returncode}\n输出: {proc.stdout or ''}"
        )

    print("⏳ 等待VPN连接", end="", flush=True)
    for attempt in range(CONNECT_ATTEMPTS):
        time.sleep(1)
        print(".", end="", flush=True)
        status = vpn_status(actual)
        if "Connected" in status:
            print()
            print(f"✅ VPN '{actual}' 连接成功")
            return actual
        if "Disconnected" in status and attempt > FAIL_AFTER_ATTEMPT:
            print()
            raise SetupError("VPN连接失败，请检查VPN配置和网络状况")
    print()
    raise SetupError("VPN连接超时，请检查VPN配置和网络状况")