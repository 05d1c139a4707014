from datetime import datetime, timezone

import pytest

from zmaptools.options import (
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
    resolve_output_fields,
    sender_count,
    validate_shards,
    validate_user_metadata,
)


def test_enforce_range_accepts_bounds():
    assert enforce_range("x", 0, 0, 0xFFFF) == 0
    assert enforce_range("x", 0xFFFF, 0, 0xFFFF) == 0xFFFF


@pytest.mark.parametrize("value", [-1, 0x10000])
def test_enforce_range_rejects(value):
    with pytest.raises(OptionError):
        enforce_range("target-port", value, 0, 0xFFFF)


def test_bandwidth_suffixes_agree():
    assert parse_bandwidth("3G") == parse_bandwidth("3000M")
    assert parse_bandwidth("3000M") == parse_bandwidth("3000000K")
    assert parse_bandwidth("3000000K") == parse_bandwidth("3000000000")


def test_bandwidth_lower_case():
    assert parse_bandwidth("1g") == 1000000000
    assert parse_bandwidth("7k") == parse_bandwidth("7K")


def test_bandwidth_plain_number():
    assert parse_bandwidth("12345") == 12345


@pytest.mark.parametrize("text", ["10X", "5 M", "-5"])
def test_bandwidth_bad_suffix(text):
    with pytest.raises(OptionError):
        parse_bandwidth(text)


def test_source_port_single():
    assert parse_source_ports("4000") == (4000, 4000)


def test_source_port_range():
    assert parse_source_ports("1000-2000") == (1000, 2000)


def test_source_port_inverted_range():
    with pytest.raises(OptionError):
        parse_source_ports("2000-1000")


@pytest.mark.parametrize("text", ["70000", "1-70000"])
def test_source_port_out_of_range(text):
    with pytest.raises(OptionError):
        parse_source_ports(text)


def test_parse_mac():
    assert parse_mac("02:00:00:00:00:01") == bytes.fromhex("020000000001")
    assert parse_mac("AA:bb:0c:00:00:ff") == bytes.fromhex("aabb0c0000ff")


@pytest.mark.parametrize("text", ["", "02:00:00:00:00", "02:00:00:00:00:zz", "020000000001"])
def test_parse_mac_invalid(text):
    with pytest.raises(OptionError):
        parse_mac(text)


def test_parse_cores():
    assert parse_cores("0,2, 5") == [0, 2, 5]


def test_default_cores():
    assert default_cores(4) == [0, 1, 2, 3]
    cores = default_cores()
    assert cores == list(range(len(cores))) and len(cores) >= 1


def test_shards_default():
    assert validate_shards(None, None, False) == (0, 1)


def test_shards_given():
    assert validate_shards(2, 5, True) == (2, 5)


def test_shards_need_seed():
    with pytest.raises(OptionError, match="seed"):
        validate_shards(0, 2, False)


def test_shards_need_both():
    with pytest.raises(OptionError, match="both"):
        validate_shards(0, None, True)


def test_shard_number_too_large():
    with pytest.raises(OptionError):
        validate_shards(3, 3, True)


def test_shards_range():
    with pytest.raises(OptionError):
        validate_shards(0, 0, True)


def test_log_file_name():
    when = datetime(2020, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert log_file_name("logs", when) == "logs/zmap-2020-01-02T030405+0000.log"


def test_log_file_name_now():
    name = log_file_name("/tmp/dir")
    assert name.startswith("/tmp/dir/zmap-") and name.endswith(".log")


def test_output_fields_default():
    assert resolve_output_fields(None, ["saddr", "success"]) == ["saddr"]


def test_output_fields_wildcard():
    available = ["saddr", "daddr", "success"]
    assert resolve_output_fields("*", available) == available


def test_output_fields_list():
    assert resolve_output_fields("daddr, saddr", ["saddr", "daddr"]) == ["daddr", "saddr"]


def test_output_fields_unknown():
    with pytest.raises(OptionError):
        resolve_output_fields("nosuch", ["saddr"])


def test_filter_mode():
    assert filter_mode(None) is FilterMode.DEFAULT
    assert filter_mode("default") is FilterMode.DEFAULT
    assert filter_mode("") is FilterMode.NONE
    assert filter_mode("success = 1") is FilterMode.EXPRESSION


def test_filter_mode_flags():
    assert filter_mode(None).filter_unsuccessful is True
    assert filter_mode("default").filter_unsuccessful is True
    assert filter_mode("").filter_unsuccessful is False
    assert filter_mode("default").filter_duplicates is False
    assert filter_mode("").filter_duplicates is False


def test_sender_count():
    assert sender_count(None, None) == 1
    assert sender_count(4, 100) == 4
    assert sender_count(4, 8) == 1
    assert sender_count(4, None) == 4


def test_user_metadata():
    assert validate_user_metadata('{"a": [1, 2]}') == {"a": [1, 2]}


@pytest.mark.parametrize("text", ["{", "null", "not json"])
def test_user_metadata_invalid(text):
    with pytest.raises(OptionError):
        validate_user_metadata(text)