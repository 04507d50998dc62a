"""Tests for wlr-randr parsing and device correlation."""

import asyncio

import pytest

from extbright.backends.randr import (
    Candidate,
    OutputInfo,
    WlrRandr,
    correlate,
    normalize_model,
    parse_wlr_randr_output,
)
from extbright.errors import CorrelationUnavailable

WLR_RANDR_OUTPUT = """\
HDMI-A-1 "Samsung Electric Company LU28R55 HNMNB00590 (HDMI-A-1)"
  Enabled: yes
  Make: Samsung Electric Company
  Model: LU28R55
  Serial: HNMNB00590
  Physical size: 620x340 mm
  Modes:
    1920x1080@60.000000 Hz
    3840x2160@59.997002 Hz (preferred, current)
DP-2 "Apple Computer Inc StudioDisplay 0x112E647C (DP-2)"
  Enabled: yes
  Make: Apple Computer Inc
  Model: StudioDisplay
  Serial: 0x112E647C
  Modes:
    5120x2880@60.000000 Hz (preferred, current)
DP-3 "Dell Inc. DELL U2720Q (DP-3)"
  Enabled: no
  Make: Dell Inc.
  Model: DELL U2720Q
  Serial:
"""


def test_parse_outputs():
    outputs = parse_wlr_randr_output(WLR_RANDR_OUTPUT)

    assert [o.name for o in outputs] == ["HDMI-A-1", "DP-2", "DP-3"]
    samsung = outputs[0]
    assert samsung.enabled
    assert samsung.make == "Samsung Electric Company"
    assert samsung.model == "LU28R55"
    assert samsung.serial == "HNMNB00590"
    assert samsung.current_mode == "3840x2160@59.997002Hz"

    dell = outputs[2]
    assert not dell.enabled
    assert dell.serial is None


def test_parse_empty_output():
    assert parse_wlr_randr_output("") == []


def test_normalize_model():
    assert normalize_model("Apple Inc. Studio Display") == "studiodisplay"
    assert normalize_model("StudioDisplay") == "studiodisplay"
    assert normalize_model("LG UltraFine 5K") == "ultrafine5k"
    assert normalize_model(None) == ""


def test_serial_match_wins():
    outputs = parse_wlr_randr_output(WLR_RANDR_OUTPUT)
    candidates = [Candidate("/dev/i2c-7", serials=("HNMNB00590",), model="Something Else")]

    matches = correlate(candidates, outputs)

    assert matches["/dev/i2c-7"].name == "HDMI-A-1"


def test_serial_match_accepts_hex_form():
    outputs = parse_wlr_randr_output(WLR_RANDR_OUTPUT)
    candidates = [Candidate("/dev/i2c-4", serials=("SERIALTEXT", "0x112E647C", "288253052"))]

    assert correlate(candidates, outputs)["/dev/i2c-4"].name == "DP-2"


def test_unique_model_match():
    outputs = parse_wlr_randr_output(WLR_RANDR_OUTPUT)
    candidates = [Candidate("hid-path", model="Apple Studio Display")]

    assert correlate(candidates, outputs)["hid-path"].name == "DP-2"


def test_ambiguous_model_does_not_match():
    outputs = [
        OutputInfo("DP-1", enabled=True, model="U2720Q"),
        OutputInfo("DP-2", enabled=True, model="U2720Q"),
    ]
    candidates = [Candidate("/dev/i2c-5", model="U2720Q")]

    assert correlate(candidates, outputs) == {}


def test_two_devices_of_one_model_do_not_match():
    outputs = [
        OutputInfo("DP-1", enabled=True, model="DELL U2720Q", serial="AAA"),
        OutputInfo("DP-2", enabled=False, model="DELL U2720Q", serial="BBB"),
    ]
    candidates = [
        Candidate("/dev/i2c-3", model="DELL U2720Q"),
        Candidate("/dev/i2c-4", model="DELL U2720Q"),
    ]

    assert correlate(candidates, outputs) == {}


def test_disabled_outputs_are_ignored():
    outputs = parse_wlr_randr_output(WLR_RANDR_OUTPUT)
    candidates = [Candidate("/dev/i2c-9", model="DELL U2720Q")]

    assert correlate(candidates, outputs) == {}


def test_claimed_outputs_are_ignored():
    outputs = parse_wlr_randr_output(WLR_RANDR_OUTPUT)
    candidates = [Candidate("/dev/i2c-7", serials=("HNMNB00590",))]

    assert correlate(candidates, outputs, claimed={"HDMI-A-1"}) == {}


def test_each_output_matches_once():
    outputs = [OutputInfo("DP-1", enabled=True, model="U2720Q", serial="S1")]
    candidates = [
        Candidate("/dev/i2c-5", serials=("S1",), model="U2720Q"),
        Candidate("/dev/i2c-6", model="U2720Q"),
    ]

    matches = correlate(candidates, outputs)

    assert list(matches) == ["/dev/i2c-5"]


def test_missing_command_is_unavailable():
    randr = WlrRandr("/nonexistent/wlr-randr")

    with pytest.raises(CorrelationUnavailable):
        asyncio.run(randr.list_outputs())


def test_failing_command_is_unavailable():
    randr = WlrRandr("false")

    with pytest.raises(CorrelationUnavailable):
        asyncio.run(randr.list_outputs())
