from pathlib import Path
from unittest.mock import patch

import pytest

from hprtsetup.config import Config, SetupError, VpnSettings
from hprtsetup.vpn import (
    available_vpns,
    connect_vpn,
    disconnect_vpn,
    find_matching_vpn,
    is_vpn_connected,
    parse_network_services,
    vpn_status,
)

SERVICES = (
    "An asterisk (*) denotes that a network service is disabled.\n"
    "Wi-Fi\n"
    "USB Ethernet\n"
    "AX88179A\n"
    "XREAL Air\n"
    "School L2TP\n"
    "\n"
    "Office VPN\n"
)


def _tool(directory: Path, name: str, body: str) -> Path:
    path = directory / name
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(0o755)
    return path


@pytest.fixture
def bin_dir(tmp_path, monkeypatch):
    directory = tmp_path / "bin"
    directory.mkdir()
    monkeypatch.setenv("PATH", str(directory))
    return directory


def _networksetup(bin_dir, listing, connect_exit=0):
    body = (
        'case "$1" in\n'
        f"  -listallnetworkservices) printf '{listing}';;\n"
        f"  *) exit {connect_exit};;\n"
        "esac"
    )
    _tool(bin_dir, "networksetup", body)


def test_parse_keeps_only_vpn_services():
    assert parse_network_services(SERVICES) == ["School L2TP", "Office VPN"]


def test_parse_empty_output():
    assert parse_network_services("") == []


def test_match_exact_preferred():
    assert find_matching_vpn("VPN", ["vpn", "VPN"]) == "VPN"


def test_match_ignoring_case():
    assert find_matching_vpn("office vpn", ["Home L2TP", "Office VPN"]) == "Office VPN"


def test_match_ignoring_spaces():
    assert find_matching_vpn("OfficeVPN", ["Home L2TP", "Office VPN"]) == "Office VPN"


def test_match_by_substring():
    assert find_matching_vpn("home", ["Office VPN", "Home L2TP"]) == "Home L2TP"


def test_no_match():
    assert find_matching_vpn("missing", ["Office VPN", "Home L2TP"]) is None


def test_available_vpns_from_tool(bin_dir):
    _networksetup(bin_dir, "Wi-Fi\\nSchool L2TP\\n")
    assert available_vpns() == ["School L2TP"]


def test_available_vpns_failure(bin_dir):
    with pytest.raises(SetupError) as excinfo:
        available_vpns()
    assert str(excinfo.value).startswith("无法获取VPN列表")


def test_status_unknown_without_scutil(bin_dir):
    assert vpn_status("School L2TP") == "Unknown"
    assert is_vpn_connected("School L2TP") is False


def test_status_reports_connected(bin_dir):
    _tool(bin_dir, "scutil", "echo Connected")
    assert "Connected" in vpn_status("School L2TP")
    assert is_vpn_connected("School L2TP") is True


def test_disconnected_is_not_connected(bin_dir):
    _tool(bin_dir, "scutil", "echo Disconnected")
    assert is_vpn_connected("School L2TP") is False


def test_disconnect_failure(bin_dir):
    _tool(bin_dir, "networksetup", "exit 1")
    with pytest.raises(SetupError) as excinfo:
        disconnect_vpn("School L2TP")
    assert str(excinfo.value).startswith("断开VPN失败")


def test_connect_requires_name():
    with pytest.raises(SetupError) as excinfo:
        connect_vpn(Config())
    assert str(excinfo.value) == "配置文件中未指定VPN名称"


def test_connect_without_any_vpn(bin_dir):
    _networksetup(bin_dir, "Wi-Fi\\n")
    with pytest.raises(SetupError) as excinfo:
        connect_vpn(Config(vpn=VpnSettings(name="School")))
    assert str(excinfo.value) == "系统中没有配置任何VPN连接"


def test_connect_unknown_name(bin_dir):
    _networksetup(bin_dir, "School L2TP\\n")
    with pytest.raises(SetupError) as excinfo:
        connect_vpn(Config(vpn=VpnSettings(name="Office")))
    assert str(excinfo.value) == "VPN 'Office' 不存在，请检查配置文件中的VPN名称"


def test_connect_already_connected(bin_dir):
    _networksetup(bin_dir, "School L2TP\\n")
    _tool(bin_dir, "scutil", "echo Connected")
    assert connect_vpn(Config(vpn=VpnSettings(name="school l2tp"))) == "School L2TP"


def test_connect_reports_failure_when_disconnected(bin_dir):
    _networksetup(bin_dir, "School L2TP\\n")
    _tool(bin_dir, "scutil", "echo Disconnected")
    with patch("time.sleep"):
        with pytest.raises(SetupError) as excinfo:
            connect_vpn(Config(vpn=VpnSettings(name="School L2TP")))
    assert str(excinfo.value) == "VPN连接失败，请检查VPN配置和网络状况"


def test_connect_command_failure(bin_dir):
    _networksetup(bin_dir, "School L2TP\\n", connect_exit=1)
    _tool(bin_dir, "scutil", "echo Disconnected")
    with pytest.raises(SetupError) as excinfo:
        connect_vpn(Config(vpn=VpnSettings(name="School L2TP")))
    assert str(excinfo.value).startswith("无法连接VPN 'School L2TP'")