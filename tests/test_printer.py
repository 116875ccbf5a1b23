import subprocess

import pytest

from hprtsetup import printer
from hprtsetup.config import Config, SetupError
from hprtsetup.printer import detect_printer


def fake_run(responses, calls):
    def run(args, **kwargs):
        args = list(args)
        calls.append(args)
        if args[0] not in responses:
            raise FileNotFoundError(args[0])
        code, out = responses[args[0]]
        if kwargs.get("check") and code:
            raise subprocess.CalledProcessError(code, args, out)
        return subprocess.CompletedProcess(args, code, stdout=out, stderr="")

    return run


@pytest.fixture
def fake(monkeypatch):
    monkeypatch.setattr(printer, "SETTLE_SECONDS", 0)
    calls = []
    responses = {"system_profiler": (0, "USB:\n  Printer:\n")}
    monkeypatch.setattr(subprocess, "run", fake_run(responses, calls))
    return responses, calls


def test_finds_hprt_printer_in_cups(fake):
    responses, calls = fake
    responses["lpstat"] = (0, "printer HPRT_TP80 is idle.  enabled since today\n")
    assert detect_printer(Config()) is True
    assert calls == [["system_profiler", "SPUSBDataType"], ["lpstat", "-p"]]


def test_other_printers_only(fake):
    responses, _ = fake
    responses["lpstat"] = (0, "printer Office_Laser is idle.\n")
    assert detect_printer(Config()) is False


def test_lpstat_failure_is_not_fatal(fake):
    responses, calls = fake
    responses["lpstat"] = (1, "lpstat: No destinations added.\n")
    assert detect_printer(Config()) is False
    assert calls[-1] == ["lpstat", "-p"]


def test_usb_query_failure(fake):
    responses, calls = fake
    del responses["system_profiler"]
    with pytest.raises(SetupError, match="无法获取USB设备信息"):
        detect_printer(Config())
    assert len(calls) == 1