"""Tests for the DDC/CI backend."""

import pytest
from fakes import FakeI2c, edid_block, reply_frame

from extbright.backends.base import DisplayId
from extbright.backends.ddc import DdcCiDisplay, checksum, parse_edid
from extbright.errors import CommunicationError, UnsupportedError


def make_display(transport, sleep, **kwargs):
    return DdcCiDisplay("/dev/i2c-7", sleep=sleep, transport=transport, **kwargs)


def test_get_brightness_frames_request(no_sleep):
    bus = FakeI2c([reply_frame(30)])
    display = make_display(bus, no_sleep)

    assert display.get_brightness() == 30
    assert bus.writes == [bytes([0x51, 0x82, 0x01, 0x10, 0xAC])]


def test_get_brightness_scales_to_percentage(no_sleep):
    bus = FakeI2c([reply_frame(40, maximum=80)])
    display = make_display(bus, no_sleep)

    assert display.get_brightness() == 50

    display.set_brightness(100)
    frame = bus.writes[-1]
    assert frame[:4] == bytes([0x51, 0x84, 0x03, 0x10])
    assert int.from_bytes(frame[4:6], "big") == 80
    assert frame[6] == checksum(frame[:6], 0x6E)


def test_set_brightness_clamps(no_sleep):
    bus = FakeI2c()
    display = make_display(bus, no_sleep, max_value=100)

    display.set_brightness(150)
    assert int.from_bytes(bus.writes[-1][4:6], "big") == 100


def test_first_write_reads_the_range(no_sleep):
    bus = FakeI2c([reply_frame(10, maximum=50)])
    display = make_display(bus, no_sleep)

    display.set_brightness(50)

    # A Get VCP request goes out before the write
    assert bus.writes[0] == bytes([0x51, 0x82, 0x01, 0x10, 0xAC])
    assert int.from_bytes(bus.writes[-1][4:6], "big") == 25
    assert display.max_value == 50


def test_known_range_skips_the_read(no_sleep):
    bus = FakeI2c()
    display = make_display(bus, no_sleep, max_value=50)

    display.set_brightness(50)

    assert len(bus.writes) == 1
    assert int.from_bytes(bus.writes[0][4:6], "big") == 25


def test_write_only_monitor_assumes_percent_range(no_sleep):
    bus = FakeI2c([reply_frame(0, result=1)])
    display = make_display(bus, no_sleep)

    display.set_brightness(40)

    assert int.from_bytes(bus.writes[-1][4:6], "big") == 40


def test_write_succeeds_on_fifth_attempt(no_sleep):
    bus = FakeI2c(write_errors=4)
    display = make_display(bus, no_sleep, retries=5, backoff=0.05, max_value=100)

    display.set_brightness(42)

    assert len(bus.writes) == 5
    # Linear backoff between attempts
    assert no_sleep.delays[:4] == pytest.approx([0.05, 0.10, 0.15, 0.20])


def test_write_fails_after_five_attempts(no_sleep):
    bus = FakeI2c(write_errors=5)
    display = make_display(bus, no_sleep, retries=5, max_value=100)

    with pytest.raises(CommunicationError):
        display.set_brightness(42)
    assert len(bus.writes) == 5


def test_unsupported_is_not_retried(no_sleep):
    bus = FakeI2c([reply_frame(0, result=1)])
    display = make_display(bus, no_sleep)

    with pytest.raises(UnsupportedError):
        display.get_brightness()
    assert len(bus.writes) == 1


def test_null_reply_is_retried(no_sleep):
    null = bytes([0x6E, 0x80, 0xBE])
    bus = FakeI2c([null, null, reply_frame(75)])
    display = make_display(bus, no_sleep)

    assert display.get_brightness() == 75
    assert len(bus.writes) == 3


def test_bad_checksum_surfaces_communication_error(no_sleep):
    corrupt = bytearray(reply_frame(75))
    corrupt[-1] ^= 0xFF
    bus = FakeI2c([bytes(corrupt)] * 5)
    display = make_display(bus, no_sleep)

    with pytest.raises(CommunicationError):
        display.get_brightness()


def test_identity():
    assert make_display(FakeI2c(), None, edid_serial="HNMNB00590").identity() == DisplayId.ddc("HNMNB00590")
    assert make_display(FakeI2c(), None).identity() == DisplayId.ddc_legacy("/dev/i2c-7")


def test_parse_edid():
    info = parse_edid(
        edid_block("DEL", serial_number=0x112E647C, serial_text="HNMNB00590", model="DELL U2720Q")
    )

    assert info.manufacturer == "DEL"
    assert info.product_code == 0xA0C4
    assert info.model == "DELL U2720Q"
    assert info.serials == ("HNMNB00590", "0x112E647C", str(0x112E647C))


def test_parse_edid_without_serials():
    info = parse_edid(edid_block("SAM"))
    assert info.manufacturer == "SAM"
    assert info.serials == ()


def test_parse_edid_rejects_garbage():
    assert parse_edid(b"\xff" * 128) is None
    assert parse_edid(edid_block()[:100]) is None


def test_read_edid(no_sleep):
    display = make_display(FakeI2c(edid=edid_block(serial_text="ABC")), no_sleep)
    assert display.read_edid().serial_text == "ABC"

    assert make_display(FakeI2c(), no_sleep).read_edid() is None


def test_close_releases_bus(no_sleep):
    bus = FakeI2c()
    make_display(bus, no_sleep).close()
    assert bus.closed
