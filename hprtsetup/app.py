"""The setup window and the sequence of configuration steps."""

from __future__ import annotations

import argparse
import logging
import os
import subprocess
import sys
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .config import Config, ConfigError, SetupError, load_config
from .connection import test_connection
from .cups import configure_cups, open_cups_admin
from .driver import install_driver, verify_driver
from .environment import check_environment
from .forward import start_port_forward
from .paths import resource_path
from .printer import detect_printer
from .socat import install_socat
from .vpn import connect_vpn

TITLE = "HPRT打印机一键配置工具"
CONFIG_NAME = "config.yaml"
STEP_PAUSE_SECONDS = 0.5
COUNTDOWN_SECONDS = 10
COUNTDOWN_TICK_SECONDS = 1.0
COUNTDOWN_ANNOUNCE_FROM = 5
POLL_MS = 100

CONNECTION_STEP = "测试连接"
VPN_STEP = "连接VPN"

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Step:
    name: str
    description: str
    execute: Callable[[Config], object]


STEPS: tuple[Step, ...] = (
    Step("环境检查", "检查系统版本和权限", check_environment),
    Step("验证驱动", "确认驱动文件完整性", verify_driver),
    Step("安装驱动", "安装HPRT打印机驱动", install_driver),
    Step("检测打印机", "检测打印机连接状态", detect_printer),
    Step("安装工具", "安装socat网络工具", install_socat),
    Step("配置CUPS", "配置CUPS打印服务", configure_cups),
    Step(VPN_STEP, "连接到指定VPN", connect_vpn),
    Step("端口转发", "启动端口转发服务", start_port_forward),
    Step(CONNECTION_STEP, "测试打印机连接", test_connection),
)


class SetupWindow:
    """Status, progress and log of the setup, shown in a window by ``run``.

    The state may be updated from any thread; the window picks changes up.
    """

    def __init__(self, title: str = TITLE, clock: Callable[[], datetime] = datetime.now):
        self.title = title
        self._clock = clock
        self._lock = threading.Lock()
        self._version = 0
        self._status = "准备开始配置..."
        self._progress = 0.0
        self._lines: list[str] = []
        self._hidden = False

    @property
    def status(self) -> str:
        with self._lock:
            return self._status

    @property
    def progress(self) -> float:
        with self._lock:
            return self._progress

    @property
    def log(self) -> str:
        with self._lock:
            return "".join(self._lines)

    @property
    def hidden(self) -> bool:
        with self._lock:
            return self._hidden

    def add_log(self, message: str) -> None:
        """Append a timestamped line to the log."""
        stamp = self._clock().strftime("%H:%M:%S")
        with self._lock:
            self._lines.append(f"[{stamp}] {message}\n")
            self._version += 1

    def set_status(self, text: str) -> None:
        with self._lock:
            self._status = text
            self._version += 1

    def set_progress(self, value: float) -> None:
        with self._lock:
            self._progress = value
            self._version += 1

    def hide(self) -> None:
        with self._lock:
            self._hidden = True
            self._version += 1

    def _snapshot(self) -> tuple[int, str, float, str, bool]:
        with self._lock:
            return (
                self._version,
                self._status,
                self._progress,
                "".join(self._lines),
                self._hidden,
            )

    def _open_cups_admin(self) -> None:
        try:
            open_cups_admin()
        except SetupError as exc:
            self.add_log(f"❌ 打开CUPS管理界面失败: {exc}")
        else:
            self.add_log("🌐 已打开CUPS管理界面")

    def run(self) -> None:
        """Show the window and process its events until it is closed."""
        import tkinter as tk
        from tkinter import ttk
        from tkinter.scrolledtext import ScrolledText

        root = tk.Tk()
        root.title(self.title)
        width, height = 600, 500
        left = max((root.winfo_screenwidth() - width) // 2, 0)
        top = max((root.winfo_screenheight() - height) // 2, 0)
        root.geometry(f"{width}x{height}+{left}+{top}")

        tk.Label(root, text=self.title, font=("TkDefaultFont", 14, "bold")).pack(
            fill="x", pady=(8, 4)
        )
        ttk.Separator(root).pack(fill="x", padx=8)
        status_label = tk.Label(root, anchor="w")
        status_label.pack(fill="x", padx=8, pady=4)
        progress_bar = ttk.Progressbar(root, maximum=1.0)
        progress_bar.pack(fill="x", padx=8)
        tk.Label(root, text="详细日志:", anchor="w").pack(fill="x", padx=8, pady=(8, 0))
        log_view = ScrolledText(root, wrap="word", height=12, state="disabled")
        log_view.pack(fill="both", expand=True, padx=8, pady=4)

        buttons = tk.Frame(root)
        buttons.pack(pady=8)
        tk.Button(
            buttons,
            text="打开CUPS管理",
            command=lambda: threading.Thread(target=self._open_cups_admin, daemon=True).start(),
        ).pack(side="left", padx=4)
        tk.Button(buttons, text="退出程序", command=root.destroy).pack(side="left", padx=4)

        shown = -1

        def refresh() -> None:
            nonlocal shown
            version, status, progress, text, hidden = self._snapshot()
            if version != shown:
                shown = version
                status_label.config(text=status)
                progress_bar["value"] = progress
                log_view.config(state="normal")
                log_view.delete("1.0", "end")
                log_view.insert("end", text)
                log_view.config(state="disabled")
                log_view.see("end")
            if hidden and root.state() != "withdrawn":
                root.withdraw()
            root.after(POLL_MS, refresh)

        refresh()
        root.mainloop()


def is_valid_version(version: str) -> bool:
    """Return True for macOS 10.13 through 15."""
    parts = version.split(".")
    if len(parts) < 2:
        return False
    if parts[0] in {"11", "12", "13", "14", "15"}:
        return True
    return parts[0] == "10" and parts[1] in {"13", "14", "15"}


def preflight_check() -> Path:
    """Check the system version and find the configuration file; return its path."""
    try:
        version = subprocess.run(
            ["sw_vers", "-productVersion"],
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            check=True,
        ).stdout.strip()
    except (OSError, subprocess.CalledProcessError):
        version = None
    if version is not None and not is_valid_version(version):
        raise SetupError(f"系统版本过低，需要macOS 10.13.6或更高版本，当前版本: {version}")

    try:
        config_path = resource_path(CONFIG_NAME)
    except OSError as exc:
        raise SetupError(f"无法定位配置文件: {exc}") from exc
    if not config_path.exists():
        raise SetupError(f"配置文件不存在: {config_path}")

    if sys.argv and sys.argv[0]:
        try:
            os.chmod(sys.argv[0], 0o755)
        except OSError:
            pass
    return config_path


def failure_advice(step_name: str) -> list[str]:
    """Return the hints shown after ``step_name`` has failed."""
    if step_name == VPN_STEP:
        return [
            "   - VPN配置是否正确（服务器地址、用户名、密码、共享密钥）",
            "   - 网络连接是否正常",
            "   - VPN服务器是否可访问",
        ]
    if step_name == CONNECTION_STEP:
        return [
            "   ⚠️ 以下问题可能导致打印测试失败:",
            "   - 远程Windows电脑上Clodop服务未运行",
            "   - 打印机未连接或未开机",
            "   - VPN连接不稳定或已断开",
            "   - 端口转发设置有问题",
            "   - 防火墙阻止了HTTPS连接（端口8443）",
            "   - SSL证书验证问题",
            "💡 建议操作:",
            "   1. 确认远程Windows电脑已安装并启动Clodop服务",
            "   2. 检查打印机电源和USB连接",
            "   3. 验证VPN连接状态",
            "   4. 重新启动配置程序重试",
        ]
    return [
        "   - 检查网络连接",
        "   - 确认所需权限",
    ]


def _hide_after_countdown(window: SetupWindow) -> None:
    for remaining in range(COUNTDOWN_SECONDS, 0, -1):
        time.sleep(COUNTDOWN_TICK_SECONDS)
        if remaining <= COUNTDOWN_ANNOUNCE_FROM:
            window.add_log(f"💡 程序将在 {remaining} 秒后隐藏窗口")
    window.add_log("🫥 程序已转入后台运行，可以关闭此窗口")
    window.hide()


def _report_failure(step: Step, exc: SetupError, window: SetupWindow) -> None:
    window.add_log(f"❌ {step.name} 失败: {exc}")
    window.set_status(f"❌ 配置失败: {step.name}")
    if step.name == CONNECTION_STEP:
        window.add_log("⚠️ 打印测试失败！这可能导致打印功能无法正常工作")
        window.set_status("⚠️ 打印测试失败 - 请检查错误信息")
    window.add_log("💡 配置失败，请查看错误信息后重新运行程序")
    window.add_log("🔍 请检查以下可能的问题:")
    for line in failure_advice(step.name):
        window.add_log(line)


def run_all_steps(cfg: Config, window: SetupWindow) -> bool:
    """Run every step in order, stopping at the first failure; return True if all passed."""
    window.add_log("🚀 开始HPRT打印机自动配置")
    window.add_log(
        f"📋 配置信息: VPN={cfg.vpn.name}, "
        f"远程主机={cfg.network.remote_host}:{cfg.network.remote_port}"
    )

    steps = STEPS
    total = len(steps)
    success = True

    for number, step in enumerate(steps, start=1):
        window.set_status(f"第{number}步: {step.description}")
        window.add_log(f"🔄 第{number}/{total}步: {step.name}")
        try:
            step.execute(cfg)
        except SetupError as exc:
            _report_failure(step, exc, window)
            success = False
            break
        window.add_log(f"✅ {step.name} 完成")
        window.set_progress(number / total)
        time.sleep(STEP_PAUSE_SECONDS)

    if success:
        window.set_status("🎉 配置完成！打印机已就绪")
        window.add_log("🎉 所有配置步骤完成！")
        window.add_log("✨ HPRT打印机现在可以通过Clodop正常使用了")
        window.add_log("📝 如果打印机已出纸，说明配置完全正常")
        window.add_log("🕒 请等待10秒确认打印结果...")
        threading.Thread(target=_hide_after_countdown, args=(window,), daemon=True).start()
    else:
        window.add_log("🚫 配置未完成，窗口将保持显示以便查看错误信息")
        window.add_log("🔧 请根据上述建议修复问题后重新启动程序")
        window.add_log("📞 如需技术支持，请保存此日志信息")
        status = window.status
        if "❌" not in status and "⚠️" not in status:
            window.set_status("❌ 配置过程中出现错误")
    return success


def _use_utf8_locale() -> None:
    for name in ("LC_ALL", "LANG", "LC_CTYPE"):
        os.environ[name] = "zh_CN.UTF-8"


def main(argv: list[str] | None = None) -> int:
    """Check the machine, load the configuration and run the setup window."""
    parser = argparse.ArgumentParser(prog="hprtsetup", description=TITLE)
    parser.parse_args(argv)
    logging.basicConfig(format="%(asctime)s %(message)s", level=logging.INFO)

    _use_utf8_locale()

    try:
        config_path = preflight_check()
    except SetupError as exc:
        log.critical("前置检查失败: %s", exc)
        return 1

    cfg: Config | None
    try:
        cfg = load_config(config_path)
        config_error: ConfigError | None = None
    except ConfigError as exc:
        log.error("配置文件错误: %s", exc)
        cfg, config_error = None, exc

    window = SetupWindow()
    if cfg is not None:
        threading.Thread(target=run_all_steps, args=(cfg, window), daemon=True).start()
    else:
        window.set_status("❌ 配置文件错误，请检查config.yaml")
        window.add_log(f"❌ 配置文件加载失败: {config_error}")
        window.add_log("💡 请检查并修改config.yaml文件后重新启动程序")

    window.run()
    return 0