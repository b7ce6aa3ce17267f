"""Defines the message model of the library.

This module contains immutable dataclasses for every request the master can
send and every response it can receive, including the exception response a
slave sends back when it cannot fulfil a request. Requests know how to turn
themselves into a PDU (function code + data) and responses know how to be
built back from one; adding the slave address and checksum is the frame
codec's job.
"""

import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Tuple, TypeVar

from .exceptions import FrameFormatError
from .protocol import (
    COIL_OFF,
    COIL_ON,
    EXCEPTION_OFFSET,
    MAX_READ_BITS,
    MAX_READ_REGISTERS,
    MAX_WRITE_COILS,
    MAX_WRITE_REGISTERS,
    FunctionCode,
    describe_exception_code,
)

_READ_BITS_FUNCTION_CODES = (FunctionCode.READ_COILS, FunctionCode.READ_DISCRETE_INPUTS)
_READ_REGISTERS_FUNCTION_CODES = (FunctionCode.READ_HOLDING_REGISTERS, FunctionCode.READ_INPUT_REGISTERS)
_WRITE_SINGLE_FUNCTION_CODES = (FunctionCode.WRITE_SINGLE_COIL, FunctionCode.WRITE_SINGLE_REGISTER)
_WRITE_MULTIPLE_FUNCTION_CODES = (FunctionCode.WRITE_MULTIPLE_COILS, FunctionCode.WRITE_MULTIPLE_REGISTERS)


def pack_bits(values: Iterable[bool]) -> bytes:
    """Packs booleans into bytes, least significant bit first."""
    values = list(values)
    packed = bytearray((len(values) + 7) // 8)
    for i, value in enumerate(values):
        if value:
            packed[i // 8] |= 1 << (i % 8)
    return bytes(packed)


def unpack_bits(data: bytes) -> Tuple[bool, ...]:
    """Unpacks every bit of `data` into booleans, least significant bit first."""
    return tuple(bool(byte & (1 << bit)) for byte in data for bit in range(8))


def _check_function_code(function_code: int, allowed: Tuple[FunctionCode, ...], message_name: str) -> None:
    if function_code not in allowed:
        raise ValueError(
            f"Invalid function code {function_code:#04x} for {message_name}. "
            f"Expected one of: {', '.join(f'{code:#04x}' for code in allowed)}."
        )


def _check_register_address(address: int) -> None:
    if not 0 <= address <= 0xFFFF:
        raise ValueError(f"Invalid data address: {address}. It must be between 0 and 65535 inclusive.")


def _check_pdu_length(pdu: bytes, expected: int, message_name: str) -> None:
    if len(pdu) != expected:
        raise FrameFormatError(
            f"Invalid {message_name} PDU length. Expected {expected} bytes, received {len(pdu)}: {pdu.hex()}"
        )


@dataclass(frozen=True)
class ModbusMessage(ABC):
    """Base class of all requests and responses.

    Attributes:
        slave_address (int): The address of the slave the message is sent to or
            received from
        function_code (int): The function code carried by the message
    """

    slave_address: int
    function_code: int

    @property
    @abstractmethod
    def pdu(self) -> bytes:
        """The protocol data unit: function code followed by the message data."""
        pass


@dataclass(frozen=True)
class ModbusResponse(ModbusMessage, ABC):
    """Base class of the responses a master can decode from a frame."""

    @classmethod
    @abstractmethod
    def from_pdu(cls, slave_address: int, pdu: bytes) -> "ModbusResponse":
        """Builds the response from a received PDU.

        Args:
            slave_address (int): The slave address found in the frame
            pdu (bytes): The function code and data of the frame

        Raises:
            FrameFormatError: If the PDU is malformed or truncated.
        """
        pass


ResponseT = TypeVar("ResponseT", bound=ModbusResponse)


@dataclass(frozen=True)
class ReadBitsRequest(ModbusMessage):
    """A read coils or read discrete inputs request.

    Attributes:
        start_address (int): The address of the first bit to read
        quantity (int): How many bits to read
    """

    start_address: int
    quantity: int

    def __post_init__(self):
        _check_function_code(self.function_code, _READ_BITS_FUNCTION_CODES, self.__class__.__name__)
        _check_register_address(self.start_address)
        if not 1 <= self.quantity <= MAX_READ_BITS:
            raise ValueError(f"Invalid quantity: {self.quantity}. It must be between 1 and {MAX_READ_BITS}.")

    @property
    def pdu(self) -> bytes:
        return struct.pack(">BHH", self.function_code, self.start_address, self.quantity)


@dataclass(frozen=True)
class ReadBitsResponse(ModbusResponse):
    """The response to a `ReadBitsRequest`.

    The frame only says how many bytes were sent, so `values` holds every bit
    of those bytes. Trimming to the requested quantity is left to the caller.

    Attributes:
        values (Tuple[bool, ...]): The bits read, padded to a whole number of bytes
    """

    values: Tuple[bool, ...]

    def __post_init__(self):
        object.__setattr__(self, "values", tuple(bool(value) for value in self.values))

    @property
    def pdu(self) -> bytes:
        data = pack_bits(self.values)
        return bytes([self.function_code, len(data)]) + data

    @classmethod
    def from_pdu(cls, slave_address: int, pdu: bytes) -> "ReadBitsResponse":
        if len(pdu) < 2:
            raise FrameFormatError(f"Read bits response PDU is too short: {pdu.hex()}")
        _check_pdu_length(pdu, 2 + pdu[1], cls.__name__)
        return cls(slave_address=slave_address, function_code=pdu[0], values=unpack_bits(pdu[2:]))


@dataclass(frozen=True)
class ReadRegistersRequest(ModbusMessage):
    """A read holding registers or read input registers request.

    Attributes:
        start_address (int): The address of the first register to read
        quantity (int): How many registers to read
    """

    start_address: int
    quantity: int

    def __post_init__(self):
        _check_function_code(self.function_code, _READ_REGISTERS_FUNCTION_CODES, self.__class__.__name__)
        _check_register_address(self.start_address)
        if not 1 <= self.quantity <= MAX_READ_REGISTERS:
            raise ValueError(f"Invalid quantity: {self.quantity}. It must be between 1 and {MAX_READ_REGISTERS}.")

    @property
    def pdu(self) -> bytes:
        return struct.pack(">BHH", self.function_code, self.start_address, self.quantity)


@dataclass(frozen=True)
class ReadRegistersResponse(ModbusResponse):
    """The response to a `ReadRegistersRequest`.

    Attributes:
        registers (Tuple[int, ...]): The 16-bit register values read
    """

    registers: Tuple[int, ...]

    def __post_init__(self):
        object.__setattr__(self, "registers", tuple(self.registers))

    @property
    def pdu(self) -> bytes:
        count = len(self.registers)
        return struct.pack(f">BB{count}H", self.function_code, count * 2, *self.registers)

    @classmethod
    def from_pdu(cls, slave_address: int, pdu: bytes) -> "ReadRegistersResponse":
        if len(pdu) < 2:
            raise FrameFormatError(f"Read registers response PDU is too short: {pdu.hex()}")

        byte_count = pdu[1]
        if byte_count % 2:
            raise FrameFormatError(f"Read registers response has an odd byte count: {byte_count}")
        _check_pdu_length(pdu, 2 + byte_count, cls.__name__)

        registers = struct.unpack(f">{byte_count // 2}H", pdu[2:])
        return cls(slave_address=slave_address, function_code=pdu[0], registers=registers)


@dataclass(frozen=True)
class WriteSingleRequest(ModbusMessage):
    """A write single coil or write single register request.

    For coils, `value` is the raw wire value (`COIL_ON` or `COIL_OFF`).

    Attributes:
        output_address (int): The address of the coil or register to write
        value (int): The value to write
    """

    output_address: int
    value: int

    def __post_init__(self):
        _check_function_code(self.function_code, _WRITE_SINGLE_FUNCTION_CODES, self.__class__.__name__)
        _check_register_address(self.output_address)
        if self.function_code == FunctionCode.WRITE_SINGLE_COIL and self.value not in (COIL_ON, COIL_OFF):
            raise ValueError(f"Invalid coil value: {self.value:#06x}. It must be {COIL_ON:#06x} or {COIL_OFF:#06x}.")
        if not 0 <= self.value <= 0xFFFF:
            raise ValueError(f"Invalid register value: {self.value}. It must be between 0 and 65535 inclusive.")

    @property
    def pdu(self) -> bytes:
        return struct.pack(">BHH", self.function_code, self.output_address, self.value)


@dataclass(frozen=True)
class WriteSingleResponse(ModbusResponse):
    """The response to a `WriteSingleRequest`, an echo of the request."""

    output_address: int
    value: int

    @property
    def pdu(self) -> bytes:
        return struct.pack(">BHH", self.function_code, self.output_address, self.value)

    @classmethod
    def from_pdu(cls, slave_address: int, pdu: bytes) -> "WriteSingleResponse":
        _check_pdu_length(pdu, 5, cls.__name__)
        function_code, output_address, value = struct.unpack(">BHH", pdu)
        return cls(slave_address=slave_address, function_code=function_code, output_address=output_address, value=value)


@dataclass(frozen=True)
class WriteMultipleCoilsRequest(ModbusMessage):
    """A write multiple coils request.

    Attributes:
        start_address (int): The address of the first coil to write
        values (Tuple[bool, ...]): The coil states to write
    """

    start_address: int
    values: Tuple[bool, ...]

    def __post_init__(self):
        _check_function_code(self.function_code, (FunctionCode.WRITE_MULTIPLE_COILS,), self.__class__.__name__)
        _check_register_address(self.start_address)
        object.__setattr__(self, "values", tuple(bool(value) for value in self.values))
        if not 1 <= len(self.values) <= MAX_WRITE_COILS:
            raise ValueError(f"Invalid number of coils: {len(self.values)}. It must be between 1 and {MAX_WRITE_COILS}.")

    @property
    def pdu(self) -> bytes:
        data = pack_bits(self.values)
        return struct.pack(">BHHB", self.function_code, self.start_address, len(self.values), len(data)) + data


@dataclass(frozen=True)
class WriteMultipleRegistersRequest(ModbusMessage):
    """A write multiple registers request.

    Attributes:
        start_address (int): The address of the first register to write
        values (Tuple[int, ...]): The 16-bit register values to write
    """

    start_address: int
    values: Tuple[int, ...]

    def __post_init__(self):
        _check_function_code(self.function_code, (FunctionCode.WRITE_MULTIPLE_REGISTERS,), self.__class__.__name__)
        _check_register_address(self.start_address)
        object.__setattr__(self, "values", tuple(self.values))
        if not 1 <= len(self.values) <= MAX_WRITE_REGISTERS:
            raise ValueError(
                f"Invalid number of registers: {len(self.values)}. It must be between 1 and {MAX_WRITE_REGISTERS}."
            )
        if any(not 0 <= value <= 0xFFFF for value in self.values):
            raise ValueError("Register values must be between 0 and 65535 inclusive.")

    @property
    def pdu(self) -> bytes:
        count = len(self.values)
        return struct.pack(
            f">BHHB{count}H", self.function_code, self.start_address, count, count * 2, *self.values
        )


@dataclass(frozen=True)
class WriteMultipleResponse(ModbusResponse):
    """The response to a write multiple coils or registers request.

    Attributes:
        start_address (int): The address of the first coil or register written
        quantity (int): How many coils or registers were written
    """

    start_address: int
    quantity: int

    @property
    def pdu(self) -> bytes:
        return struct.pack(">BHH", self.function_code, self.start_address, self.quantity)

    @classmethod
    def from_pdu(cls, slave_address: int, pdu: bytes) -> "WriteMultipleResponse":
        _check_pdu_length(pdu, 5, cls.__name__)
        function_code, start_address, quantity = struct.unpack(">BHH", pdu)
        return cls(slave_address=slave_address, function_code=function_code, start_address=start_address, quantity=quantity)


@dataclass(frozen=True)
class SlaveExceptionResponse(ModbusResponse):
    """An exception response sent by a slave that could not fulfil a request.

    Its function code is the request's function code plus `EXCEPTION_OFFSET`.

    Attributes:
        exception_code (int): The slave exception code, usually one of
            `SlaveExceptionCode`
    """

    exception_code: int

    @property
    def request_function_code(self) -> int:
        """The function code of the request this exception answers."""
        return self.function_code - EXCEPTION_OFFSET

    @property
    def pdu(self) -> bytes:
        return bytes([self.function_code, self.exception_code])

    @classmethod
    def from_pdu(cls, slave_address: int, pdu: bytes) -> "SlaveExceptionResponse":
        _check_pdu_length(pdu, 2, cls.__name__)
        return cls(slave_address=slave_address, function_code=pdu[0], exception_code=pdu[1])

    def __str__(self) -> str:
        return (
            f"Slave {self.slave_address} rejected function code {self.request_function_code:#04x} "
            f"with exception code {self.exception_code} ({describe_exception_code(self.exception_code)})."
        )
