"""Brightness control over DDC/CI on Linux I2C character devices."""

import functools
import logging
import operator
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from smbus2 import SMBus, i2c_msg

from extbright.backends.base import DisplayId, DisplayProtocol, ProtocolKind
from extbright.errors import CommunicationError, UnsupportedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# I2C addresses
DDCCI_ADDR = 0x37
EDID_ADDR = 0x50

# DDC/CI framing (VESA DDC/CI 1.1)
HOST_ADDR_W = 0x51
HOST_ADDR_R = 0x50
DISPLAY_ADDR_W = 0x6E
LENGTH_FLAG = 0x80

GET_VCP = 0x01
GET_VCP_REPLY = 0x02
SET_VCP = 0x03

# DDC/CI VCP code for brightness
VCP_BRIGHTNESS = 0x10

# Display processing time after a request before the reply can be read
REPLY_WAIT = 0.040
# Display processing time after a set
SET_WAIT = 0.050
# Minimum spacing between two commands on the same bus
MIN_COMMAND_INTERVAL = 0.040
# A read issued sooner than this after a write may return the old value
READ_AFTER_WRITE_DELAY = 0.200

DEFAULT_RETRIES = 5
DEFAULT_BACKOFF = 0.050

EDID_HEADER = bytes.fromhex("00 FF FF FF FF FF FF 00")
EDID_LENGTH = 128


def checksum(data: bytes, initial: int = 0) -> int:
    """XOR checksum used by DDC/CI frames."""
    return functools.reduce(operator.xor, data, initial)


@dataclass(frozen=True)
class EdidInfo:
    """The identifying parts of a base EDID block."""

    manufacturer: str  # 3-letter PNP id, e.g., "DEL"
    product_code: int
    serial_number: int  # numeric serial from the header, 0 if unset
    serial_text: Optional[str] = None  # descriptor 0xFF, e.g., "HNMNB00590"
    model: Optional[str] = None  # descriptor 0xFC, e.g., "DELL U2720Q"

    @property
    def serials(self) -> tuple[str, ...]:
        """Every form of the serial the output-naming service may report."""
        serials = []
        if self.serial_text:
            serials.append(self.serial_text)
        if self.serial_number:
            serials.append(f"0x{self.serial_number:08X}")
            serials.append(str(self.serial_number))
        return tuple(serials)


def parse_edid(data: bytes) -> Optional[EdidInfo]:
    """Parse a 128-byte EDID block. Returns None if the header is missing."""
    start = data.find(EDID_HEADER)
    if start < 0 or len(data) - start < EDID_LENGTH:
        return None
    edid = data[start : start + EDID_LENGTH]

    packed = int.from_bytes(edid[8:10], "big")
    manufacturer = "".join(
        chr(((packed >> shift) & 0x1F) + ord("A") - 1) for shift in (10, 5, 0)
    )
    product_code = int.from_bytes(edid[10:12], "little")
    serial_number = int.from_bytes(edid[12:16], "little")

    serial_text = None
    model = None
    for offset in (54, 72, 90, 108):
        descriptor = edid[offset : offset + 18]
        if descriptor[0:3] != b"\x00\x00\x00":
            continue
        text = descriptor[5:18].split(b"\x0a", 1)[0].decode("ascii", "replace").strip()
        if descriptor[3] == 0xFF:
            serial_text = text or None
        elif descriptor[3] == 0xFC:
            model = text or None

    return EdidInfo(
        manufacturer=manufacturer,
        product_code=product_code,
        serial_number=serial_number,
        serial_text=serial_text,
        model=model,
    )


class I2cBus:
    """Raw I2C transactions on a /dev/i2c-N node."""

    def __init__(self, path: str):
        self.path = path
        self._bus = SMBus(path)

    def write(self, address: int, data: bytes) -> None:
        self._bus.i2c_rdwr(i2c_msg.write(address, data))

    def read(self, address: int, length: int) -> bytes:
        msg = i2c_msg.read(address, length)
        self._bus.i2c_rdwr(msg)
        return bytes(msg)

    def write_read(self, address: int, data: bytes, length: int) -> bytes:
        write = i2c_msg.write(address, data)
        read = i2c_msg.read(address, length)
        self._bus.i2c_rdwr(write, read)
        return bytes(read)

    def close(self) -> None:
        self._bus.close()


class DdcCiDisplay(DisplayProtocol):
    """A monitor reached over DDC/CI.

    Consecutive commands must be at least 40 ms apart (``min_command_interval``,
    enforced by the display manager). Failed reads and writes are retried up
    to ``retries`` attempts in total with a linearly growing delay before a
    CommunicationError is raised.
    """

    kind = ProtocolKind.DDC_CI
    min_command_interval = MIN_COMMAND_INTERVAL

    def __init__(
        self,
        bus_path: str,
        edid_serial: Optional[str] = None,
        model: Optional[str] = None,
        retries: int = DEFAULT_RETRIES,
        backoff: float = DEFAULT_BACKOFF,
        sleep: Callable[[float], None] = time.sleep,
        transport: Optional[I2cBus] = None,
        max_value: Optional[int] = None,
    ):
        """Wrap an I2C bus.

        Args:
            bus_path: I2C device node, e.g. "/dev/i2c-7"
            edid_serial: EDID serial from output correlation, for a stable id
            model: Model name for logging
            retries: Total attempts per command
            backoff: Delay after the first failed attempt, grows per attempt
            sleep: Blocking sleep, replaceable in tests
            transport: Already opened bus; opened from bus_path when omitted
            max_value: Raw VCP 0x10 maximum if already known, otherwise read
                before the first write
        """
        self.device_path = bus_path
        self.edid_serial = edid_serial
        self.model = model
        self.retries = max(1, retries)
        self.backoff = backoff
        self._sleep = sleep
        self._transport = transport if transport is not None else I2cBus(bus_path)
        self._max_value = max_value if max_value and max_value > 0 else None

    @property
    def max_value(self) -> Optional[int]:
        """Raw brightness maximum reported by the monitor, None until read."""
        return self._max_value

    def identity(self) -> DisplayId:
        if self.edid_serial:
            return DisplayId.ddc(self.edid_serial)
        return DisplayId.ddc_legacy(self.device_path)

    def get_brightness(self) -> int:
        current, maximum = self._retry("get brightness", self._get_vcp_once)
        if maximum > 0:
            self._max_value = maximum
            return max(0, min(100, round(current * 100 / maximum)))
        self._max_value = 100
        return max(0, min(100, current))

    def set_brightness(self, value: int) -> None:
        value = max(0, min(100, value))
        if self._max_value is None:
            self._learn_max_value()
        raw = round(value * self._max_value / 100)
        self._retry("set brightness", lambda: self._set_vcp_once(raw))
        logger.debug(f"Set {self.identity()} brightness to {value}% (raw {raw})")

    def _learn_max_value(self) -> None:
        try:
            self.get_brightness()
        except UnsupportedError:
            logger.warning(f"{self.device_path} cannot report its brightness range, assuming 0-100")
            self._max_value = 100

    def read_edid(self) -> Optional[EdidInfo]:
        """Read the base EDID block from address 0x50."""
        try:
            data = self._transport.write_read(EDID_ADDR, b"\x00", EDID_LENGTH)
        except OSError as e:
            logger.debug(f"EDID read failed on {self.device_path}: {e}")
            return None
        return parse_edid(data)

    def close(self) -> None:
        self._transport.close()

    def _retry(self, action: str, fn: Callable[[], T]) -> T:
        last_error: Optional[CommunicationError] = None

        for attempt in range(1, self.retries + 1):
            try:
                result = fn()
            except CommunicationError as e:
                last_error = e
                logger.debug(
                    f"{self.device_path}: {action} attempt {attempt}/{self.retries} failed: {e}"
                )
                if attempt < self.retries:
                    self._sleep(self.backoff * attempt)
                continue

            if attempt > 1:
                logger.info(f"{self.device_path}: {action} succeeded on attempt {attempt}")
            return result

        raise CommunicationError(
            f"{action} failed after {self.retries} attempts: {last_error}",
            str(self.identity()),
        )

    def _write(self, payload: bytes) -> None:
        frame = bytes([HOST_ADDR_W, LENGTH_FLAG | len(payload)]) + payload
        frame += bytes([checksum(frame, DISPLAY_ADDR_W)])
        try:
            self._transport.write(DDCCI_ADDR, frame)
        except OSError as e:
            raise CommunicationError(f"I2C write failed: {e}", self.device_path) from e

    def _read(self, length: int) -> bytes:
        """Read a reply frame of ``length`` payload bytes and return the payload."""
        try:
            data = self._transport.read(DDCCI_ADDR, length + 3)
        except OSError as e:
            raise CommunicationError(f"I2C read failed: {e}", self.device_path) from e

        if len(data) < 3 or data[0] != DISPLAY_ADDR_W:
            raise CommunicationError(f"unexpected reply {data.hex()}", self.device_path)
        if data[1] == LENGTH_FLAG:
            raise CommunicationError("null reply", self.device_path)
        size = data[1] & ~LENGTH_FLAG
        if size != length or len(data) < size + 3:
            raise CommunicationError(f"reply length {size}, expected {length}", self.device_path)
        if checksum(data[: size + 3], HOST_ADDR_R) != 0:
            raise CommunicationError(f"bad checksum in {data.hex()}", self.device_path)

        return data[2 : size + 2]

    def _get_vcp_once(self) -> tuple[int, int]:
        self._write(bytes([GET_VCP, VCP_BRIGHTNESS]))
        self._sleep(REPLY_WAIT)
        reply = self._read(8)

        if reply[0] != GET_VCP_REPLY or reply[2] != VCP_BRIGHTNESS:
            raise CommunicationError(f"unexpected VCP reply {reply.hex()}", self.device_path)
        if reply[1] != 0:
            raise UnsupportedError("brightness (VCP 0x10) not supported", self.device_path)

        maximum = int.from_bytes(reply[4:6], "big")
        current = int.from_bytes(reply[6:8], "big")
        return current, maximum

    def _set_vcp_once(self, raw: int) -> None:
        self._write(bytes([SET_VCP, VCP_BRIGHTNESS]) + raw.to_bytes(2, "big"))
        self._sleep(SET_WAIT)
