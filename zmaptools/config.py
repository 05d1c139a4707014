"""Build a scan configuration from the command line and an optional config file."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import secrets
import sys
from dataclasses import dataclass, field
from ipaddress import IPv4Address
from typing import Any, Optional, Sequence

from . import gateway
from .options import (
    DEFAULT_OUTPUT_FIELDS,
    MAX_PORT,
    FilterMode,
    OptionError,
    default_cores,
    enforce_range,
    filter_mode,
    log_file_name,
    parse_bandwidth,
    parse_cores,
    parse_mac,
    parse_source_ports,
    sender_count,
    validate_shards,
    validate_user_metadata,
)

__all__ = ["ScanConfig", "build_parser", "build_config", "resolve_network"]

log = logging.getLogger("zmap")

DEFAULT_CONFIG_FILE = "/etc/zmap/zmap.conf"
DEFAULT_BLACKLIST_FILE = "/etc/zmap/blacklist.conf"
MAC_ADDR_LEN = 6

DEFAULT_HELP_TEXT = (
    "By default, ZMap prints out unique, successful "
    "IP addresses (e.g., SYN-ACK from a TCP SYN scan) "
    "in ASCII form (e.g., 192.168.1.5) to stdout or the specified output "
    'file. Internally this is handled by the "csv" output module and is '
    "equivalent to running zmap --output-module=csv --output-fields=saddr "
    '--output-filter="success = 1 && repeat = 0".'
)


@dataclass
class ScanConfig:
    """Everything the scanner needs to know before it starts sending."""

    log_level: int = 3
    log_file: Optional[str] = None
    log_directory: Optional[str] = None
    log_path: Optional[str] = None
    syslog: bool = True
    config_file: Optional[str] = None
    config_loaded: bool = False
    output_module: str = "csv"
    output_module_name: str = "default"
    probe_module: str = "tcp_synscan"
    raw_output_fields: str = DEFAULT_OUTPUT_FIELDS
    filter_mode: FilterMode = FilterMode.DEFAULT
    output_filter_str: Optional[str] = None
    ignore_invalid_hosts: bool = False
    dryrun: bool = False
    quiet: bool = False
    cooldown_secs: int = 8
    output_filename: Optional[str] = None
    blacklist_filename: Optional[str] = None
    whitelist_filename: Optional[str] = None
    list_of_ips_filename: Optional[str] = None
    probe_args: Optional[str] = None
    probe_ttl: int = 255
    output_args: Optional[str] = None
    iface: Optional[str] = None
    max_runtime: int = 0
    max_results: int = 0
    rate: int = -1
    packet_streams: int = 1
    status_updates_file: Optional[str] = None
    num_retries: int = 10
    max_sendto_failures: int = -1
    min_hitrate: float = 0.0
    metadata_filename: Optional[str] = None
    custom_metadata: Any = None
    custom_metadata_str: Optional[str] = None
    notes: Optional[str] = None
    destination_cidrs: list[str] = field(default_factory=list)
    source_port_first: Optional[int] = None
    source_port_last: Optional[int] = None
    target_port: Optional[int] = None
    source_ip_addresses: list[IPv4Address] = field(default_factory=list)
    send_ip_pkts: bool = False
    gw_ip: Optional[IPv4Address] = None
    gw_mac: bytes = bytes(MAC_ADDR_LEN)
    gw_mac_set: bool = False
    hw_mac: Optional[bytes] = None
    hw_mac_set: bool = False
    seed: int = 0
    seed_provided: bool = False
    shard_num: int = 0
    total_shards: int = 1
    bandwidth: int = 0
    max_targets: Optional[int] = None
    senders: int = 1
    pin_cores: list[int] = field(default_factory=list)

    @property
    def filter_unsuccessful(self) -> bool:
        return self.filter_mode.filter_unsuccessful

    @property
    def filter_duplicates(self) -> bool:
        return self.filter_mode.filter_duplicates


def build_parser() -> argparse.ArgumentParser:
    """Return the parser for the scanner's command line."""
    parser = argparse.ArgumentParser(
        prog="zmap",
        description="A fast Internet-wide scanner.",
        epilog=DEFAULT_HELP_TEXT,
    )
    add = parser.add_argument
    add("inputs", nargs="*", metavar="SUBNET", help="subnets to scan")
    add("-C", "--config", help="read a configuration file")
    add("-v", "--verbosity", type=int, default=3, help="log level (0-5)")
    add("-l", "--log-file", help="write log entries to FILE")
    add("-L", "--log-directory", help="write time-stamped log files to DIR")
    add("--disable-syslog", action="store_true", help="disable logging to syslog")
    add("-O", "--output-module", default="default", help="output module")
    add("-M", "--probe-module", default="tcp_synscan", help="probe module")
    add("-X", "--iplayer", action="store_true", help="send IP packets instead of Ethernet")
    add("-f", "--output-fields", help="fields to output, or * for all")
    add("--output-filter", help="filter expression for results")
    add("--ignore-invalid-hosts", action="store_true",
        help="deprecated; use --ignore-blacklist-errors")
    add("--ignore-blacklist-errors", action="store_true",
        help="ignore invalid blacklist/whitelist entries")
    add("-d", "--dryrun", action="store_true", help="do not actually send packets")
    add("-q", "--quiet", action="store_true", help="do not print status updates")
    add("-c", "--cooldown-time", type=int, default=8,
        help="seconds to keep receiving after sending ends")
    add("-o", "--output-file", help="write results to FILE")
    add("-b", "--blacklist-file", help="file of subnets to exclude")
    add("-w", "--whitelist-file", help="file of subnets to include")
    add("-I", "--list-of-ips-file", help="file of individual addresses to scan")
    add("--probe-args", help="arguments passed to the probe module")
    add("--probe-ttl", type=int, help="TTL of probe packets")
    add("--output-args", help="arguments passed to the output module")
    add("-i", "--interface", help="network interface to use")
    add("-t", "--max-runtime", type=int, help="cap the time spent sending")
    add("-N", "--max-results", type=int, help="cap the number of results")
    add("-r", "--rate", type=int, help="packets per second")
    add("-P", "--probes", type=int, help="probes sent to each address")
    add("-u", "--status-updates-file", help="write status updates as CSV to FILE")
    add("--retries", type=int, help="retries for each failed send")
    add("--max-sendto-failures", type=int, help="abort after this many send failures")
    add("--min-hitrate", type=float, help="abort if the hit rate falls below this")
    add("-m", "--metadata-file", help="write scan metadata to FILE, - for stdout")
    add("--user-metadata", help="JSON metadata added to the scan metadata")
    add("--notes", help="notes added to the scan metadata")
    add("-s", "--source-port", help="source port or range first-last")
    add("-p", "--target-port", type=int, help="destination port")
    add("-S", "--source-ip", help="comma-separated source addresses")
    add("-G", "--gateway-mac", help="gateway hardware address")
    add("--source-mac", help="source hardware address")
    add("-e", "--seed", type=int, help="seed for the address permutation")
    add("--shard", type=int, help="this scan's shard number")
    add("--shards", type=int, help="total number of shards")
    add("-B", "--bandwidth", help="bits per second, with optional G, M or K suffix")
    add("-n", "--max-targets", type=int, help="cap the number of addresses probed")
    add("-T", "--sender-threads", type=int, help="number of sending threads")
    add("--cores", help="comma-separated cores to pin threads to")
    add("-V", "--version", action="version", version="%(prog)s 1.0")
    return parser


def _read_config_file(path: str) -> list[str]:
    """Turn ``name value`` / ``name = value`` lines into command-line arguments."""
    arguments: list[str] = []
    with open(path) as handle:
        for raw in handle:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                name, _, value = line.partition("=")
            else:
                name, _, value = line.partition(" ")
            name, value = name.strip(), value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
                value = value[1:-1]
            arguments.append(f"--{name}")
            if value:
                arguments.append(value)
    return arguments


def _parse_source_ips(text: str) -> list[IPv4Address]:
    addresses = []
    for part in (piece.strip() for piece in text.split(",")):
        if not part:
            continue
        try:
            addresses.append(IPv4Address(part))
        except ValueError as exc:
            raise OptionError(f"invalid source address `{part}'") from exc
    return addresses


def build_config(argv: Optional[Sequence[str]] = None) -> ScanConfig:
    """Parse ``argv`` (and any configuration file) into a checked ScanConfig."""
    arguments = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_intermixed_args(arguments)

    config = ScanConfig()
    config_path = args.config or DEFAULT_CONFIG_FILE
    if args.config or os.path.exists(config_path):
        try:
            file_arguments = _read_config_file(config_path)
        except OSError as exc:
            raise OptionError(
                f"unable to read configuration file {config_path}: {exc.strerror}"
            ) from exc
        args = parser.parse_intermixed_args(file_arguments + arguments)
        config.config_file = config_path
        config.config_loaded = True
        log.debug("Loaded configuration file %s", config_path)

    config.log_level = args.verbosity
    config.log_file = args.log_file
    config.log_directory = args.log_directory
    config.syslog = not args.disable_syslog
    if config.log_file and config.log_directory:
        raise OptionError("log-file and log-directory cannot specified simultaneously.")
    if config.log_file:
        config.log_path = config.log_file
    elif config.log_directory:
        config.log_path = log_file_name(config.log_directory)

    config.output_module_name = args.output_module
    config.output_module = "csv" if args.output_module == "default" else args.output_module
    config.probe_module = args.probe_module

    if args.iplayer:
        config.send_ip_pkts = True
        config.gw_mac_set = True
        config.gw_mac = bytes(MAC_ADDR_LEN)

    if args.output_fields is not None and args.output_module == "default":
        raise OptionError(
            "default output module does not support multiple fields. "
            "Please specify an output module (e.g., CSV)"
        )
    if args.output_fields is not None:
        config.raw_output_fields = args.output_fields

    config.filter_mode = filter_mode(args.output_filter)
    if config.filter_mode is FilterMode.EXPRESSION:
        config.output_filter_str = args.output_filter
        log.debug("will use output filter %s", args.output_filter)

    if args.ignore_invalid_hosts:
        log.warning(
            "--ignore-invalid-hosts is deprecated. Use --ignore-blacklist-errors "
            "instead to ignore invalid blacklist/whitelist entries."
        )
    config.ignore_invalid_hosts = args.ignore_invalid_hosts or args.ignore_blacklist_errors

    config.dryrun = args.dryrun
    config.quiet = args.quiet
    config.cooldown_secs = args.cooldown_time
    given = {
        "output_filename": args.output_file,
        "blacklist_filename": args.blacklist_file,
        "list_of_ips_filename": args.list_of_ips_file,
        "probe_args": args.probe_args,
        "probe_ttl": args.probe_ttl,
        "output_args": args.output_args,
        "iface": args.interface,
        "max_runtime": args.max_runtime,
        "max_results": args.max_results,
        "rate": args.rate,
        "packet_streams": args.probes,
        "status_updates_file": args.status_updates_file,
        "num_retries": args.retries,
        "max_sendto_failures": args.max_sendto_failures,
        "min_hitrate": args.min_hitrate,
        "whitelist_filename": args.whitelist_file,
        "notes": args.notes,
    }
    for name, value in given.items():
        if value is not None:
            setattr(config, name, value)

    if config.num_retries < 0:
        raise OptionError("Invalid retry count")
    if config.max_sendto_failures >= 0:
        log.debug("scan will abort if more than %i sendto failures occur",
                  config.max_sendto_failures)
    if config.min_hitrate > 0.0:
        log.debug("scan will abort if hitrate falls below %f", config.min_hitrate)

    config.metadata_filename = args.metadata_file
    if args.user_metadata is not None:
        config.custom_metadata_str = args.user_metadata
        config.custom_metadata = validate_user_metadata(args.user_metadata)

    config.destination_cidrs = list(args.inputs)
    if config.destination_cidrs and config.blacklist_filename == DEFAULT_BLACKLIST_FILE:
        log.warning(
            "ZMap is currently using the default blacklist located at %s, which "
            "excludes locally scoped networks.", DEFAULT_BLACKLIST_FILE
        )

    if args.source_port is not None:
        config.source_port_first, config.source_port_last = parse_source_ports(
            args.source_port
        )
    if args.target_port is not None:
        config.target_port = enforce_range("target-port", args.target_port, 0, MAX_PORT)
    if args.source_ip is not None:
        config.source_ip_addresses = _parse_source_ips(args.source_ip)
    if args.gateway_mac is not None:
        config.gw_mac = parse_mac(args.gateway_mac)
        config.gw_mac_set = True
    if args.source_mac is not None:
        config.hw_mac = parse_mac(args.source_mac)
        config.hw_mac_set = True

    if args.seed is not None:
        config.seed = args.seed
        config.seed_provided = True
    else:
        config.seed = secrets.randbits(64)
        config.seed_provided = False

    config.shard_num, config.total_shards = validate_shards(
        args.shard, args.shards, args.seed is not None
    )

    if args.bandwidth is not None:
        config.bandwidth = parse_bandwidth(args.bandwidth)
    config.max_targets = args.max_targets
    config.senders = sender_count(args.sender_threads, config.max_targets)
    config.pin_cores = parse_cores(args.cores) if args.cores else default_cores()
    return config


def resolve_network(config: ScanConfig) -> ScanConfig:
    """Fill in the interface, source address and gateway MAC that were not given."""
    changes: dict[str, Any] = {}
    iface = config.iface
    if iface is None:
        iface = gateway.get_default_iface()
        changes["iface"] = iface
        log.debug("no interface provided. will use default interface (%s).", iface)
    if not config.source_ip_addresses:
        try:
            address = gateway.get_iface_ip(iface)
        except gateway.GatewayError as exc:
            raise gateway.GatewayError(
                f"could not detect default IP address for {iface}."
                " Try specifying a source address (-S)."
            ) from exc
        changes["source_ip_addresses"] = [address]
        log.debug("no source IP address given. will use default address: %s.", address)
    if not config.gw_mac_set:
        gw_ip = gateway.get_default_gw(iface)
        log.debug("found gateway IP %s on %s", gw_ip, iface)
        try:
            gw_mac = gateway.get_hw_addr(gw_ip, iface)
        except gateway.GatewayError as exc:
            raise gateway.GatewayError(
                f"could not detect GW MAC address for {gw_ip} on {iface}."
                " Try setting default gateway mac address (-G)."
            ) from exc
        changes.update(gw_ip=gw_ip, gw_mac=gw_mac, gw_mac_set=True)
    return dataclasses.replace(config, **changes) if changes else config