# zmaptools

Helpers for the setup and the output of an Internet-wide network scanner:
a tee for scan results, gateway and interface discovery, link-layer frame
sending, and parsing and checking of scan options.

## What it contains

- `zmaptools.ztee` – a tee for scan results, also installed as the `ztee`
  command. It copies every line read from standard input to an output
  file and, for CSV input, prints just the IP address column to standard
  output, so the addresses can be fed to a follow-up tool while the full
  results are kept on disk. It can keep only successful rows and report
  its read rate and buffer size at a fixed interval (one second by
  default). The pieces are usable on their own: `detect_format`,
  `find_field_index`, `csv_field`, `is_success`, `TeeStats`, `TeeConfig`
  and `Tee`.
- `zmaptools.gateway` – discovery of a default interface, the default
  gateway, the gateway's hardware address, and an interface's IPv4 and
  hardware address. On Linux this uses netlink and interface ioctls; on
  other systems a routing socket. The netlink builders and parsers
  (`build_netlink_request`, `parse_netlink_messages`,
  `parse_route_messages`, `parse_neighbor_messages`,
  `find_default_gateway`, `find_hw_addr`) and `parse_routing_reply` work
  on plain bytes.
- `zmaptools.sender` – `PacketSender`, which writes packets to a socket
  (to a fixed address when given) or to a raw file descriptor, and
  `link_address`, which builds the packet-socket address for frames sent
  to the gateway from an interface.
- `zmaptools.options` – validation of option values: `enforce_range`,
  `parse_bandwidth`, `parse_source_ports`, `parse_mac`, `parse_cores`,
  `default_cores`, `validate_shards`, `log_file_name`,
  `resolve_output_fields`, `filter_mode` / `FilterMode`, `sender_count`
  and `validate_user_metadata`.
- `zmaptools.config` – `build_parser` for the scanner's command line,
  `build_config`, which turns arguments (plus `/etc/zmap/zmap.conf` when
  present, or the file named by `--config`) into a checked `ScanConfig`,
  and `resolve_network`, which fills in the interface, source address and
  gateway MAC address that were not given.

## Installing

```
pip install .
```

Only the standard library is needed.

## Using ztee

Pipe scan output through `ztee`, naming the file that receives the full
results:

```
ztee results.csv < scan-output.csv
```

The input format is detected from the first line: a line wrapped in
`{...}` is JSON, which is refused; a line containing a comma is CSV with
a header; anything else is passed through unchanged. For CSV, the value
of the `saddr` or `ip` column of each row after the header is printed to
standard output.

Options:

- `-s`, `--success-only` – print only rows whose `success` column starts
  with a non-zero integer or is `true` in any case.
- `-m`, `--monitor` – print a status line to standard error every second.
- `-u`, `--status-updates-file FILE` – write the same statistics as CSV
  rows to FILE.
- `-r`, `--raw` – pass lines through without detecting the format.
- `-l`, `--log-file FILE` – write log messages to FILE instead of
  standard error.
- `-V`, `--version` – print the version.

## Using the library

```python
from zmaptools.ztee import detect_format, csv_field, InputFormat
from zmaptools.options import parse_bandwidth, parse_source_ports

assert detect_format("saddr,success\n") is InputFormat.CSV
assert csv_field("10.0.0.1,1", 0) == "10.0.0.1"

bits_per_second = parse_bandwidth("10M")
first_port, last_port = parse_source_ports("40000-40100")
```

```python
from zmaptools.config import build_config, resolve_network

config = build_config(["-p", "80", "--dryrun", "10.0.0.0/8"])
config = resolve_network(config)  # looks up interface, address and gateway
```

Invalid options raise `OptionError`; failures to discover the gateway or
an interface raise `GatewayError`; send failures raise `SendError`;
failures of the tee raise `TeeError`.

## What it does not do

There is no scanner here. The package builds and checks a scan
configuration and can find the network details a scan needs, but it has
no probe or output modules, no address permutation, blacklist or
whitelist handling, no send and receive loop and no scan command. The
only command installed is `ztee`.

## Running the tests

```
pip install .[test]
pytest
```