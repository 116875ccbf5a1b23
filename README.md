# hprtsetup

A one-step configuration tool that prepares a Mac to print on an HPRT
thermal printer through Clodop running on a remote Windows machine.

It opens a small Tk window with a status line, a progress bar and a
timestamped log, and works through these steps in order, stopping at the
first one that fails:

1. Check the environment: macOS, a supported version, membership of the
   `admin` group, network reachability and a writable working directory
2. Verify the driver package: a `.pkg` file of at least 200 KB that can be read
3. Install the HPRT driver with `installer` (asks for administrator rights),
   unless CUPS or a driver directory already lists an HPRT driver
4. Detect the printer through `system_profiler` and `lpstat`
5. Find a usable `socat`: the one beside the program, then one on `PATH`,
   and as a last resort install it with Homebrew
6. Configure CUPS: enable the web interface and printer sharing, then print
   the CUPS address and the shared printer addresses
7. Connect the configured VPN and wait up to 30 seconds for it
8. Start `socat` forwarding the local port to the remote host
9. Test the local and remote ports, look for the Clodop service on
   localhost (the configured local port, then 8443, 8000, 8080 and 9000) and
   open a test print page in the browser

When a step fails, the log shows advice that fits the step that failed and
the window stays open. When all steps pass, the window hides itself after a
ten-second countdown while the port forwarding keeps running.

The window also has a button that opens the CUPS web interface and one that
quits.

## Requirements

- macOS with the usual system tools (`sw_vers`, `networksetup`, `scutil`,
  `lpstat`, `cupsctl`, `osascript`, `lsof`, `open`)
- Python with Tk support for the window

## Installation

```
pip install .
```

## Configuration

Put a `config.yaml` next to the program or in the current working directory:

```yaml
vpn:
  name: "Office VPN"
network:
  local_port: "8443"
  remote_host: "192.168.1.50"
  remote_port: "8443"
printer:
  model: "HPRT"
  driver_file: "HPRT_Driver.pkg"
```

Loading fails if `vpn.name` is empty or still the placeholder text, or if
`network.remote_host` is empty. The VPN name must match a network service on
this Mac; an exact match is tried first, then a case-insensitive match, then
a match that ignores spaces, and last a substring match.

Files such as `config.yaml`, the driver package and a bundled `socat` are
looked up first in the program's own directory and then in the current
working directory.

## Usage

```
hprtsetup
```

Before the window opens, the program checks the macOS version and that
`config.yaml` exists; if either check fails it logs the reason and exits
with status 1. If the file exists but cannot be loaded, the window opens and
shows the error instead of running the steps.

## Using it as a library

Each step is a function that takes a `Config` and raises
`hprtsetup.config.SetupError` when it fails; configuration problems raise
`hprtsetup.config.ConfigError`, a subclass of it.

```python
from hprtsetup.config import load_config
from hprtsetup.vpn import find_matching_vpn
from hprtsetup.cups import parse_printers

cfg = load_config("config.yaml")
cfg.validate()
print(find_matching_vpn("office vpn", ["Wi-Fi", "Office VPN"]))  # Office VPN
print(parse_printers("printer HPRT_TP80 is idle.\n"))            # ['HPRT_TP80']
```

`hprtsetup.app.run_all_steps(cfg, window)` runs the whole sequence against a
`SetupWindow` and returns whether every step passed; the window's `status`,
`progress` and `log` can be read without showing it.

## What it does not do

- It does not add the printer to CUPS; it only reports whether CUPS already
  lists an HPRT printer.
- It does not check the driver package against a known checksum; the MD5 is
  computed and returned by `verify_driver` only.
- It does not stop the `socat` forwarding or disconnect the VPN when it
  exits; `hprtsetup.vpn.disconnect_vpn` is available for the latter.

## Tests

```
pip install .[test]
pytest
```