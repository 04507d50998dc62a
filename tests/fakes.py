"""Fake hardware used across the test suite."""

import threading
import time
from typing import Optional

from extbright.backends.base import DisplayId, DisplayProtocol, ProtocolKind
from extbright.backends.ddc import EDID_HEADER, checksum


class Overlap:
    """Counts how many fake commands are in flight at once."""

    def __init__(self):
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def __enter__(self):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)

    def __exit__(self, *exc_info):
        with self._lock:
            self.active -= 1


class FakeProtocol(DisplayProtocol):
    """In-memory display with optional latency and failures."""

    def __init__(
        self,
        device_path: str = "/dev/i2c-1",
        display_id: Optional[DisplayId] = None,
        brightness: int = 50,
        delay: float = 0.0,
        fail: Optional[Exception] = None,
        kind: ProtocolKind = ProtocolKind.DDC_CI,
        min_command_interval: float = 0.0,
        overlap: Optional[Overlap] = None,
        ignore_writes: bool = False,
    ):
        self.device_path = device_path
        self.kind = kind
        self.min_command_interval = min_command_interval
        self._id = display_id or DisplayId.ddc_legacy(device_path)
        self.brightness = brightness
        self.delay = delay
        self.fail = fail
        self.overlap = overlap or Overlap()
        self.ignore_writes = ignore_writes
        self.set_calls: list[int] = []
        self.command_times: list[float] = []
        self.closed = False

    def identity(self) -> DisplayId:
        return self._id

    def get_brightness(self) -> int:
        with self.overlap:
            self.command_times.append(time.monotonic())
            time.sleep(self.delay)
            if self.fail:
                raise self.fail
            return self.brightness

    def set_brightness(self, value: int) -> None:
        with self.overlap:
            self.command_times.append(time.monotonic())
            time.sleep(self.delay)
            if self.fail:
                raise self.fail
            self.set_calls.append(value)
            if not self.ignore_writes:
                self.brightness = value

    def close(self) -> None:
        self.closed = True


class FakeI2c:
    """Scripted I2C transport for DdcCiDisplay.

    ``replies`` are returned by successive reads; an exception in the list is
    raised instead. Reading past the script raises OSError like a silent bus.
    """

    def __init__(self, replies=(), edid: Optional[bytes] = None, write_errors: int = 0):
        self.replies = list(replies)
        self.edid = edid
        self.write_errors = write_errors
        self.writes: list[bytes] = []
        self.closed = False

    def write(self, address: int, data: bytes) -> None:
        assert address == 0x37
        self.writes.append(bytes(data))
        if self.write_errors:
            self.write_errors -= 1
            raise OSError(121, "Remote I/O error")

    def read(self, address: int, length: int) -> bytes:
        if not self.replies:
            raise OSError(121, "Remote I/O error")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def write_read(self, address: int, data: bytes, length: int) -> bytes:
        if self.edid is None:
            raise OSError(6, "No such device or address")
        return self.edid

    def close(self) -> None:
        self.closed = True


class FakeHidDevice:
    """hid.device stand-in that remembers the last feature report."""

    def __init__(self, raw: int = 30000, write_result: int = 7):
        self.report = [1] + list(raw.to_bytes(4, "little")) + [0, 0]
        self.write_result = write_result
        self.sent: list[bytes] = []
        self.closed = False

    def get_feature_report(self, report_id: int, size: int) -> list[int]:
        return list(self.report)

    def send_feature_report(self, data: bytes) -> int:
        self.sent.append(bytes(data))
        if self.write_result >= 0:
            self.report = list(data)
        return self.write_result

    def close(self) -> None:
        self.closed = True


def reply_frame(current: int, maximum: int = 100, result: int = 0) -> bytes:
    """A Get VCP Feature reply for brightness as a monitor sends it."""
    body = bytes([0x6E, 0x88, 0x02, result, 0x10, 0x00])
    body += maximum.to_bytes(2, "big") + current.to_bytes(2, "big")
    return body + bytes([checksum(body, 0x50)])


def edid_block(
    manufacturer: str = "DEL",
    product_code: int = 0xA0C4,
    serial_number: int = 0,
    serial_text: Optional[str] = None,
    model: Optional[str] = None,
) -> bytes:
    """A minimal base EDID block with optional serial and name descriptors."""
    data = bytearray(128)
    data[0:8] = EDID_HEADER
    packed = 0
    for letter, shift in zip(manufacturer, (10, 5, 0)):
        packed |= (ord(letter) - ord("A") + 1) << shift
    data[8:10] = packed.to_bytes(2, "big")
    data[10:12] = product_code.to_bytes(2, "little")
    data[12:16] = serial_number.to_bytes(4, "little")

    def descriptor(tag: int, text: str) -> bytes:
        payload = (text.encode("ascii") + b"\x0a").ljust(13, b" ")[:13]
        return b"\x00\x00\x00" + bytes([tag, 0x00]) + payload

    if serial_text:
        data[54:72] = descriptor(0xFF, serial_text)
    if model:
        data[72:90] = descriptor(0xFC, model)
    return bytes(data)
