"""A Python library for the master side of Modbus request/response exchanges.

This package provides the exchange engine that governs a master's
conversation with slave devices over an unreliable, half-duplex channel:
serialized access to the channel, bounded retries for transport faults,
waiting on busy or acknowledging slaves, and validation that a response
answers the request that was sent.

Key Components:
- Exchange engine:
    - ModbusTransport: Sends one request and returns its validated response,
      retrying or waiting as the outcome requires. Thread-safe.
    - TransportConfig: The retry policy (retries, wait to retry).
- Boundaries:
    - Channel: The byte channel frames travel over.
    - SerialChannel: A Channel on a pySerial interface with RS485
      transceiver control.
    - FrameCodec / RtuFrameCodec: Turn messages into frames and back.
- Master:
    - ModbusMaster: Read/write coils and registers through a transport.
    - ModbusSerialMaster: A ModbusMaster wired for Modbus RTU on a serial port.
- Exceptions:
    - TransportError: A retry-eligible fault, raised once retries run out.
    - SlaveException: A slave refused the request.
    - ExchangeAbortedError: The caller's deadline or cancel event ended a wait.
"""

from .channel import Channel
from .codec import DecodedResponse, FrameCodec, ResponseKind, RtuFrameCodec
from .config import TransportConfig
from .diagnostics import RetryEvent, WaitEvent
from .exceptions import (
    ExchangeAbortedError,
    ExchangeCancelledError,
    ExchangeDeadlineExceededError,
    FrameFormatError,
    FunctionCodeMismatchError,
    ModbusError,
    ResponseTimeoutError,
    ResponseValidationError,
    SlaveAddressMismatchError,
    SlaveException,
    TransportError,
    TransportIOError,
)
from .master import ModbusMaster, ModbusSerialMaster
from .models import (
    ReadBitsRequest,
    ReadBitsResponse,
    ReadRegistersRequest,
    ReadRegistersResponse,
    SlaveExceptionResponse,
    WriteMultipleCoilsRequest,
    WriteMultipleRegistersRequest,
    WriteMultipleResponse,
    WriteSingleRequest,
    WriteSingleResponse,
)
from .protocol import FunctionCode, SlaveExceptionCode
from .serial_channel import SerialChannel
from .transport import ModbusTransport

__all__ = [
    "ModbusTransport",
    "TransportConfig",
    "Channel",
    "SerialChannel",
    "FrameCodec",
    "RtuFrameCodec",
    "DecodedResponse",
    "ResponseKind",
    "ModbusMaster",
    "ModbusSerialMaster",
    "RetryEvent",
    "WaitEvent",
    "FunctionCode",
    "SlaveExceptionCode",
    "ReadBitsRequest",
    "ReadBitsResponse",
    "ReadRegistersRequest",
    "ReadRegistersResponse",
    "WriteSingleRequest",
    "WriteSingleResponse",
    "WriteMultipleCoilsRequest",
    "WriteMultipleRegistersRequest",
    "WriteMultipleResponse",
    "SlaveExceptionResponse",
    "ModbusError",
    "TransportError",
    "FrameFormatError",
    "ResponseTimeoutError",
    "TransportIOError",
    "ResponseValidationError",
    "FunctionCodeMismatchError",
    "SlaveAddressMismatchError",
    "SlaveException",
    "ExchangeAbortedError",
    "ExchangeCancelledError",
    "ExchangeDeadlineExceededError",
]
