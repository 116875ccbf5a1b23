"""Configuration file loading and validation."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

PLACEHOLDER_VPN_NAME = "请修改为你的VPN连接名称"

_NULL_TAG = "tag:yaml.org,2002:null"


class SetupError(Exception):
    """A setup step could not complete."""


class ConfigError(SetupError):
    """The configuration file is missing, malformed or incomplete."""


@dataclass
class VpnSettings:
    name: str = ""


@dataclass
class NetworkSettings:
    local_port: str = ""
    remote_host: str = ""
    remote_port: str = ""


@dataclass
class PrinterSettings:
    model: str = ""
    driver_file: str = ""


@dataclass
class Config:
    vpn: VpnSettings = field(default_factory=VpnSettings)
    network: NetworkSettings = field(default_factory=NetworkSettings)
    printer: PrinterSettings = field(default_factory=PrinterSettings)

    def validate(self) -> None:
        """Raise ConfigError for the first required setting that is empty."""
        required = (
            (self.vpn.name, "VPN名称不能为空"),
            (self.network.local_port, "本地端口不能为空"),
            (self.network.remote_host, "远程主机地址不能为空"),
            (self.network.remote_port, "远程端口不能为空"),
            (self.printer.driver_file, "打印机驱动文件名不能为空"),
        )
        for value, message in required:
            if not value:
                raise ConfigError(message)


def _is_null(node: yaml.Node | None) -> bool:
    return node is None or (isinstance(node, yaml.ScalarNode) and node.tag == _NULL_TAG)


def _mapping(node: yaml.Node | None, where: str) -> dict[str, yaml.Node]:
    if _is_null(node):
        return {}
    if not isinstance(node, yaml.MappingNode):
        raise ConfigError(f"无法解析配置文件: {where} 应为映射")
    return {
        key.value: value
        for key, value in node.value
        if isinstance(key, yaml.ScalarNode)
    }


def _scalar(node: yaml.Node, where: str) -> str:
    if not isinstance(node, yaml.ScalarNode):
        raise ConfigError(f"无法解析配置文件: {where} 应为字符串")
    return "" if node.tag == _NULL_TAG else node.value


def _section(cls, node: yaml.Node | None, name: str):
    entries = _mapping(node, name)
    values = {
        f.name: _scalar(entries[f.name], f"{name}.{f.name}")
        for f in fields(cls)
        if f.name in entries
    }
    return cls(**values)


def load_config(filename: str | Path) -> Config:
    """Read a YAML configuration file and check the settings it must have."""
    try:
        data = Path(filename).read_bytes()
    except OSError as exc:
        raise ConfigError(f"无法读取配置文件 {filename}: {exc}") from exc

    try:
        root = yaml.compose(data, Loader=yaml.SafeLoader)
    except yaml.YAMLError as exc:
        raise ConfigError(f"无法解析配置文件: {exc}") from exc

    sections = _mapping(root, "config")
    config = Config(
        vpn=_section(VpnSettings, sections.get("vpn"), "vpn"),
        network=_section(NetworkSettings, sections.get("network"), "network"),
        printer=_section(PrinterSettings, sections.get("printer"), "printer"),
    )

    if config.vpn.name in ("", PLACEHOLDER_VPN_NAME):
        raise ConfigError("请在config.yaml中设置正确的VPN名称")
    if not config.network.remote_host:
        raise ConfigError("请在config.yaml中设置Windows电脑的IP地址")
    return config