from __future__ import annotations

import pytest

from stagemix.core import protocol


def test_commands_are_formatted_with_one_decimal() -> None:
    assert protocol.set_gain("in", 3, -12) == "SET GAIN IN 3 = -12.0"
    assert protocol.get_gain("OUT", 2) == "GET GAIN OUT 2"
    assert protocol.set_mute("STIN", 1, True) == "SET MUTE STIN 1 ON"
    assert protocol.set_mute("IN", 4, False) == "SET MUTE IN 4 OFF"
    assert protocol.get_vu("OUT", 8) == "GET VU OUT 8"
    assert protocol.set_preset(4) == "SET PRESET 4"
    assert protocol.get_preset() == "GET PRESET"


def test_gain_is_clamped_to_console_range() -> None:
    assert protocol.set_gain("IN", 1, 25) == "SET GAIN IN 1 = 10.0"
    assert protocol.set_gain("IN", 1, -90) == "SET GAIN IN 1 = -60.0"


def test_send_commands_accept_only_input_sources() -> None:
    assert protocol.set_send("IN", 5, 2, -6.04) == "SET SEND IN 5 OUT 2 = -6.0"
    assert protocol.get_send("STIN", 1, 3) == "GET SEND STIN 1 OUT 3"
    with pytest.raises(ValueError, match="Unknown channel class"):
        protocol.set_send("OUT", 1, 2, 0)


def test_unknown_channel_class_is_rejected() -> None:
    with pytest.raises(ValueError):
        protocol.get_vu("AUX", 1)


def test_encode_line_appends_crlf() -> None:
    assert protocol.encode_line("GET PRESET") == b"GET PRESET\r\n"


def test_parse_number_reads_trailing_value() -> None:
    assert protocol.parse_number("GAIN IN 1 = -12.5") == -12.5
    assert protocol.parse_number("VU OUT 2 = 0.0") == 0.0


def test_parse_number_falls_back_to_default() -> None:
    assert protocol.parse_number("garbage") == -60
    assert protocol.parse_number("VALUE = -", default=-10) == -10


def test_parse_preset() -> None:
    assert protocol.parse_preset("PRESET = 7") == 7
    assert protocol.parse_preset("no preset here") == 1


def test_parse_vu_line() -> None:
    reading = protocol.parse_vu_line("VU IN 12 = -23.4")
    assert reading is not None
    assert reading.channel_class == "IN"
    assert reading.channel_number == 12
    assert reading.level_db == -23.4
    assert reading.peak_db == -23.4
    assert reading.key == "IN:12"


def test_parse_vu_line_ignores_other_responses() -> None:
    assert protocol.parse_vu_line("OK GAIN IN 1 = -10.0") is None
    assert protocol.parse_vu_line("PRESET = 3") is None


def test_split_lines_drops_blank_lines() -> None:
    assert protocol.split_lines("OK\r\n\r\nVU IN 1 = -20.0\r\n") == ["OK", "VU IN 1 = -20.0"]
