"""Shared Pytest Fixtures for Channel and Hardware Mocking.

This file provides fixtures that are automatically discovered by pytest. Its
primary purpose is to create a simulated bus so the exchange engine and the
serial channel can be exercised without a physical device.

The fixtures in this file provide:
- A `MockSerial` port that answers written frames through a responder callable.
- A `ScriptedChannel` whose reads follow a script of frames and faults.
- A mocked `RPi.GPIO` module to prevent import errors on non-RPi systems.
- A mocked `time.sleep` so waits and transmission delays cost nothing.

Fixtures to mock `RPi.GPIO` and `time.sleep` are marked as `autouse=True`,
so they are automatically applied to all tests without needing to be explicitly
requested.
"""

import sys
from typing import Callable, List, Optional, Sequence, Union
from unittest.mock import MagicMock

import pytest

from modbus_master.channel import Channel
from modbus_master.codec import RtuFrameCodec
from modbus_master.exceptions import ResponseTimeoutError
from modbus_master.models import ModbusMessage, SlaveExceptionResponse
from modbus_master.protocol import EXCEPTION_OFFSET, SlaveExceptionCode
from modbus_master.utils import calculate_crc

SLAVE_ADDRESS = 17


def rtu_frame(message: ModbusMessage) -> bytes:
    """Builds the RTU frame of any message, request or response."""
    return RtuFrameCodec().build_message_frame(message)


def exception_frame(slave_address: int, function_code: int, exception_code: int) -> bytes:
    """Builds the RTU frame of a slave exception response."""
    return rtu_frame(
        SlaveExceptionResponse(
            slave_address=slave_address,
            function_code=function_code + EXCEPTION_OFFSET,
            exception_code=exception_code,
        )
    )


def acknowledge_frame(slave_address: int, function_code: int) -> bytes:
    return exception_frame(slave_address, function_code, SlaveExceptionCode.ACKNOWLEDGE)


def busy_frame(slave_address: int, function_code: int) -> bytes:
    return exception_frame(slave_address, function_code, SlaveExceptionCode.SLAVE_DEVICE_BUSY)


def corrupt(frame: bytes) -> bytes:
    """Flips the CRC of a frame so it fails the checksum."""
    return frame[:-2] + bytes(b ^ 0xFF for b in frame[-2:])


def with_crc(body: bytes) -> bytes:
    return body + calculate_crc(body)


ScriptStep = Union[bytes, Exception]


class ScriptedChannel(Channel):
    """A `Channel` whose reads follow a script.

    Each step of the script is either a raw frame returned by `read_response`
    or an exception raised by it. Once the script runs out, every read times
    out. Writes are recorded; `write_errors` lets a test make the next writes fail.

    Attributes:
        writes (List[bytes]): Every frame written, in order
        reads (int): How many times `read_response` was called
        events (List[str]): "write" and "read" entries in call order
    """

    def __init__(self, script: Sequence[ScriptStep] = (), write_errors: Sequence[Optional[Exception]] = ()):
        self._script: List[ScriptStep] = list(script)
        self._write_errors: List[Optional[Exception]] = list(write_errors)
        self.writes: List[bytes] = []
        self.reads = 0
        self.events: List[str] = []
        self.opened = False

    def open(self) -> None:
        self.opened = True

    def close(self) -> None:
        self.opened = False

    def is_open(self) -> bool:
        return self.opened

    def write(self, frame: bytes) -> None:
        self.events.append("write")
        self.writes.append(frame)
        if self._write_errors:
            error = self._write_errors.pop(0)
            if error is not None:
                raise error

    def read_response(self) -> bytes:
        self.events.append("read")
        self.reads += 1
        if not self._script:
            raise ResponseTimeoutError("The operation has timed out.")

        step = self._script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


class MockSerial:
    """A mock `serial.Serial` object for testing the serial channel without hardware.

    Data written via `write` is recorded and passed to `responder`, whose
    return value is appended to the read buffer, simulating a slave answering
    on the bus. `read` returns fewer bytes than requested when the buffer runs
    dry, like a real port whose read timeout expired.
    """

    def __init__(self, *args, **kwargs):
        """Initializes the mock serial port."""
        self._read_buffer = bytearray()
        self.written: List[bytes] = []
        self.responder: Optional[Callable[[bytes], bytes]] = None
        self.is_open = True
        self.port = "/dev/ttyMOCK0"
        self.baudrate = 19200
        self.timeout = 0.1
        self.rts = False
        self.rts_history: List[bool] = []

    def __setattr__(self, name, value):
        if name == "rts" and "rts_history" in self.__dict__:
            self.rts_history.append(value)
        super().__setattr__(name, value)

    @property
    def in_waiting(self) -> int:
        return len(self._read_buffer)

    def feed(self, data: bytes) -> None:
        """Puts bytes on the bus for the channel to read."""
        self._read_buffer.extend(data)

    def write(self, data: bytes) -> int:
        self.written.append(bytes(data))
        if self.responder is not None:
            self._read_buffer.extend(self.responder(bytes(data)))
        return len(data)

    def read(self, size: int = 1) -> bytes:
        data = self._read_buffer[:size]
        self._read_buffer = self._read_buffer[size:]
        return bytes(data)

    def reset_input_buffer(self) -> None:
        self._read_buffer = bytearray()

    def flush(self):
        """Simulates flushing the write buffer. Does nothing."""
        pass

    def open(self):
        self.is_open = True

    def close(self):
        """Simulates closing the port."""
        self.is_open = False


@pytest.fixture
def mock_serial_port():
    """Provides a fresh `MockSerial` instance."""
    return MockSerial()


@pytest.fixture(autouse=True)
def mock_rpi_gpio(mocker):
    """An autouse fixture that mocks the `RPi.GPIO` module.

    This prevents `ImportError` when running tests on systems that are not a
    Raspberry Pi or do not have the RPi.GPIO library installed. It replaces
    the module in `sys.modules` with a `MagicMock`, which absorbs any calls
    without error.
    """
    mock_gpio = MagicMock()
    mock_rpi = MagicMock(GPIO=mock_gpio)
    mocker.patch.dict(sys.modules, {"RPi": mock_rpi, "RPi.GPIO": mock_gpio})
    return mock_gpio


@pytest.fixture(autouse=True)
def mock_sleep(mocker):
    """An autouse fixture that mocks `time.sleep`.

    This makes waits after busy/acknowledge responses and the serial channel's
    transmission delays instant, and lets tests assert on the requested durations.
    """
    return mocker.patch("time.sleep", return_value=None)
