"""Detecting the attached printer."""

from __future__ import annotations

import subprocess
import time

from .config import Config, SetupError

SETTLE_SECONDS = 2.0


def _output(*args: str) -> str:
    return subprocess.run(
        list(args),
        capture_output=True,
        encoding="utf-8",
        errors="replace",
        check=True,
    ).stdout


def detect_printer(cfg: Config) -> bool:
    """Query USB devices and CUPS; return True if CUPS lists an HPRT printer.

    A printer missing from either listing is not an error; only failing to
    query the USB devices is.
    """
    time.sleep(SETTLE_SECONDS)

    try:
        _output("system_profiler", "SPUSBDataType")
    except (OSError, subprocess.CalledProcessError) as exc:
        raise SetupError(f"无法获取USB设备信息: {exc}") from exc

    try:
        registered = _output("lpstat", "-p")
    except (OSError, subprocess.CalledProcessError):
        return False
    # The printer is not added to CUPS automatically: connection details vary by model.
    return "hprt" in registered.lower()