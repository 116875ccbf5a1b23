"""Finding, repairing or installing the socat forwarding tool."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

from .config import Config, SetupError
from .paths import resource_path

BUNDLED_NAME = "socat"


def _succeeds(*args: str) -> bool:
    try:
        proc = subprocess.run(
            list(args),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError:
        return False
    return proc.returncode == 0


def _make_executable(path: Path) -> None:
    try:
        path.chmod(path.stat().st_mode | 0o111)
    except OSError:
        pass


def is_socat_executable(path: str | Path) -> bool:
    """Return True if the program at ``path`` runs ``-V`` successfully."""
    return _succeeds(str(path), "-V")


def system_socat_path() -> str:
    """Return the socat found on PATH."""
    found = shutil.which("socat")
    if found is None:
        raise SetupError("socat未安装或不在PATH中")
    return found


def is_socat_installed() -> bool:
    """Return True if socat is on PATH."""
    return shutil.which("socat") is not None


def is_homebrew_installed() -> bool:
    """Return True if a working Homebrew is on PATH."""
    brew = shutil.which("brew")
    if brew is None:
        return False
    try:
        version = subprocess.run(
            [brew, "--version"],
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            check=True,
        ).stdout
    except (OSError, subprocess.CalledProcessError):
        return False
    return "Homebrew" in version


def get_socat_path() -> str:
    """Return the socat to use, preferring the copy shipped beside the program."""
    print("🔍 查找socat路径...")

    try:
        bundled = resource_path(BUNDLED_NAME)
    except OSError as exc:
        print(f"   同目录未找到socat: {exc}")
    else:
        print(f"   检查同目录socat: {bundled}")
        if is_socat_executable(bundled):
            print(f"✅ 使用同目录静态socat: {bundled}")
            print("💡 静态编译版本，无外部依赖，推荐！")
            return str(bundled)
        print(f"⚠️ 同目录socat不可执行: {bundled}")

    try:
        system_path = system_socat_path()
    except SetupError:
        print("❌ 也未找到系统安装的socat")
        print("💡 故障排除:")
        print("   1. ⭐ 推荐：下载官方发布版本（内置静态socat）")
        print("   2. 确保socat文件存在于程序同目录")
        print("   3. 检查socat文件权限 (chmod +x socat)")
        print("   4. 或安装系统版本: brew install socat")
        raise SetupError("找不到可用的socat") from None

    print(f"⚠️ 使用系统socat: {system_path}")
    print("   注意：系统版本可能有动态库依赖，在其他机器上可能无法运行")

    if is_socat_executable(system_path):
        return system_path

    print(f"❌ 系统socat不可执行: {system_path}")
    raise SetupError("找不到可用的socat")


def install_socat(cfg: Config) -> str:
    """Make sure a usable socat exists, installing it with Homebrew as a last resort.

    Returns the path of the socat that will be used.
    """
    print("🔧 ========== Socat网络工具检查 ==========")

    try:
        bundled: Path | None = resource_path(BUNDLED_NAME)
    except OSError as exc:
        bundled = None
        print(f"ℹ️ 同目录未找到socat文件 ({exc})")
        print("💡 推荐使用官方发布版本，内置静态编译的socat")

    if bundled is not None:
        if is_socat_executable(bundled):
            print(f"✅ 检测到同目录静态socat: {bundled}")
            print("💡 使用内置静态编译版本，无需任何系统依赖！")
            return str(bundled)
        print(f"⚠️ 找到同目录socat文件但不可执行: {bundled}")
        print("   正在检查权限...")
        _make_executable(bundled)
        if is_socat_executable(bundled):
            print("✅ 修复权限成功，同目录静态socat现在可用")
            print("💡 使用内置静态编译版本，无需任何系统依赖！")
            return str(bundled)
        print("❌ 无法修复同目录socat的执行权限")

    if is_socat_installed():
        system_path = system_socat_path()
        print(f"⚠️ 发现系统socat: {system_path}")
        print("   注意：系统版本可能有动态库依赖问题")
        print("   建议使用官方发布版本的内置静态socat")
        return system_path

    print("⚠️ 既没有同目录socat，也没有系统安装的socat")
    print()
    print("🎯 推荐解决方案（按优先级排序）:")
    print("   1. ⭐ 下载官方发布版本 - 内置静态编译socat，无依赖")
    print("   2. 📁 手动放置socat - 将socat文件放在程序同目录")
    print("   3. 🍺 使用Homebrew - brew install socat（可能有依赖问题）")
    print()

    if not is_homebrew_installed():
        print("❌ 未安装Homebrew，无法自动安装socat")
        print("💡 强烈建议下载官方发布版本，避免复杂的安装过程")
        raise SetupError("需要socat支持，请下载官方发布版本或手动安装")

    print("🤔 检测到Homebrew，是否尝试安装系统版socat？")
    print("⚠️ 警告：Homebrew安装的socat可能在目标机器上有依赖问题")
    print("📦 正在通过Homebrew安装socat（不推荐用于生产）...")

    brew = shutil.which("brew") or "brew"
    try:
        proc = subprocess.run(
            [brew, "install", "socat"],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            encoding="utf-8",
            errors="replace",
        )
        failure = None if proc.returncode == 0 else f"exit status {proc.returncode}"
        output = proc.stdout or ""
    except OSError as exc:
        failure, output = str(exc), ""
    if failure is not None:
        print(f"❌ Homebrew安装socat失败: {failure}")
        print(f"   输出: {output}")
        print("💡 建议下载官方发布版本，包含静态编译的socat")
        raise SetupError("安装socat失败，建议使用官方发布版本")

    if not is_socat_installed():
        print("❌ socat安装后仍无法找到")
        print("💡 建议下载官方发布版本，避免安装问题")
        raise SetupError("socat安装失败，建议使用官方发布版本")

    system_path = system_socat_path()
    print(f"✅ socat安装完成: {system_path}")
    print("⚠️ 注意：当前使用的是动态链接版本，在其他机器上可能有依赖问题")
    print("💡 建议在生产环境使用官方发布版本的静态编译socat")
    return system_path