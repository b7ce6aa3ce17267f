"""Defines the Master, the application-facing API for reading and writing slave data."""

import logging
import threading
from typing import List, Optional, Sequence, Type

import serial

from .codec import RtuFrameCodec
from .diagnostics import DiagnosticsListener
from .models import (
    ModbusMessage,
    ReadBitsRequest,
    ReadBitsResponse,
    ReadRegistersRequest,
    ReadRegistersResponse,
    ResponseT,
    WriteMultipleCoilsRequest,
    WriteMultipleRegistersRequest,
    WriteMultipleResponse,
    WriteSingleRequest,
    WriteSingleResponse,
)
from .protocol import (
    COIL_OFF,
    COIL_ON,
    DEFAULT_RETRIES,
    DEFAULT_WAIT_TO_RETRY_MILLISECONDS,
    FIRST_SLAVE_ADDRESS,
    LAST_SLAVE_ADDRESS,
    FunctionCode,
    is_valid_slave_address,
)
from .serial_channel import DEFAULT_TRANSCEIVER_TOGGLE_TIME_S, SerialChannel
from .transport import ModbusTransport
from .utils import logger_factory


class ModbusMaster:
    """The master node of the bus.

    The Master initiates every exchange. Each method builds one request, sends
    it to a single slave through the `ModbusTransport`, and returns the
    decoded values of the response. All methods are blocking and may be called
    from several threads at once; the transport serializes their exchanges.

    Every method accepts optional `timeout_ms` and `cancel_event` keyword
    arguments, which are passed to `ModbusTransport.unicast_message` to bound
    the time spent waiting on a busy or acknowledging slave.

    Attributes:
        _transport (ModbusTransport): The exchange engine used for every request
    """

    def __init__(self, *, transport: ModbusTransport, log_level: int = logging.INFO):
        """Initializes the Master.

        Args:
            transport (ModbusTransport): The exchange engine to send requests through
            log_level (int): The logging level for this instance
        """
        self._logger = logger_factory.get_logger(self.__class__.__name__, level=log_level)
        self._transport = transport

    def __enter__(self) -> "ModbusMaster":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    @property
    def transport(self) -> ModbusTransport:
        return self._transport

    def is_open(self) -> bool:
        """Returns True if the underlying channel is open, False otherwise."""
        return self._transport.is_open()

    def open(self) -> None:
        """Opens the underlying channel."""
        self._transport.open()

    def close(self) -> None:
        """Closes the underlying channel."""
        self._transport.close()

    def read_coils(
        self,
        slave_address: int,
        start_address: int,
        quantity: int,
        *,
        timeout_ms: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[bool]:
        """Reads the state of `quantity` coils starting at `start_address`."""
        return self._read_bits(
            FunctionCode.READ_COILS, slave_address, start_address, quantity, timeout_ms, cancel_event
        )

    def read_inputs(
        self,
        slave_address: int,
        start_address: int,
        quantity: int,
        *,
        timeout_ms: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[bool]:
        """Reads the state of `quantity` discrete inputs starting at `start_address`."""
        return self._read_bits(
            FunctionCode.READ_DISCRETE_INPUTS, slave_address, start_address, quantity, timeout_ms, cancel_event
        )

    def read_holding_registers(
        self,
        slave_address: int,
        start_address: int,
        quantity: int,
        *,
        timeout_ms: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[int]:
        """Reads `quantity` holding registers starting at `start_address`."""
        return self._read_registers(
            FunctionCode.READ_HOLDING_REGISTERS, slave_address, start_address, quantity, timeout_ms, cancel_event
        )

    def read_input_registers(
        self,
        slave_address: int,
        start_address: int,
        quantity: int,
        *,
        timeout_ms: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[int]:
        """Reads `quantity` input registers starting at `start_address`."""
        return self._read_registers(
            FunctionCode.READ_INPUT_REGISTERS, slave_address, start_address, quantity, timeout_ms, cancel_event
        )

    def write_single_coil(
        self,
        slave_address: int,
        coil_address: int,
        value: bool,
        *,
        timeout_ms: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Switches a single coil on or off."""
        request = WriteSingleRequest(
            slave_address=slave_address,
            function_code=FunctionCode.WRITE_SINGLE_COIL,
            output_address=coil_address,
            value=COIL_ON if value else COIL_OFF,
        )
        self._send(request, WriteSingleResponse, timeout_ms, cancel_event)

    def write_single_register(
        self,
        slave_address: int,
        register_address: int,
        value: int,
        *,
        timeout_ms: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Writes a single holding register."""
        request = WriteSingleRequest(
            slave_address=slave_address,
            function_code=FunctionCode.WRITE_SINGLE_REGISTER,
            output_address=register_address,
            value=value,
        )
        self._send(request, WriteSingleResponse, timeout_ms, cancel_event)

    def write_multiple_coils(
        self,
        slave_address: int,
        start_address: int,
        values: Sequence[bool],
        *,
        timeout_ms: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Writes a sequence of coils starting at `start_address`."""
        request = WriteMultipleCoilsRequest(
            slave_address=slave_address,
            function_code=FunctionCode.WRITE_MULTIPLE_COILS,
            start_address=start_address,
            values=tuple(values),
        )
        self._send(request, WriteMultipleResponse, timeout_ms, cancel_event)

    def write_multiple_registers(
        self,
        slave_address: int,
        start_address: int,
        values: Sequence[int],
        *,
        timeout_ms: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Writes a sequence of holding registers starting at `start_address`."""
        request = WriteMultipleRegistersRequest(
            slave_address=slave_address,
            function_code=FunctionCode.WRITE_MULTIPLE_REGISTERS,
            start_address=start_address,
            values=tuple(values),
        )
        self._send(request, WriteMultipleResponse, timeout_ms, cancel_event)

    def _read_bits(
        self,
        function_code: FunctionCode,
        slave_address: int,
        start_address: int,
        quantity: int,
        timeout_ms: Optional[int],
        cancel_event: Optional[threading.Event],
    ) -> List[bool]:
        request = ReadBitsRequest(
            slave_address=slave_address, function_code=function_code, start_address=start_address, quantity=quantity
        )
        response = self._send(request, ReadBitsResponse, timeout_ms, cancel_event)
        # The response is padded to a whole number of bytes.
        return list(response.values[:quantity])

    def _read_registers(
        self,
        function_code: FunctionCode,
        slave_address: int,
        start_address: int,
        quantity: int,
        timeout_ms: Optional[int],
        cancel_event: Optional[threading.Event],
    ) -> List[int]:
        request = ReadRegistersRequest(
            slave_address=slave_address, function_code=function_code, start_address=start_address, quantity=quantity
        )
        response = self._send(request, ReadRegistersResponse, timeout_ms, cancel_event)
        return list(response.registers)

    def _send(
        self,
        request: ModbusMessage,
        response_type: Type[ResponseT],
        timeout_ms: Optional[int],
        cancel_event: Optional[threading.Event],
    ) -> ResponseT:
        """Validates the target address and runs the exchange.

        Raises:
            ValueError: If the slave address is not a valid unicast address.
        """
        if not is_valid_slave_address(request.slave_address):
            raise ValueError(
                f"Invalid slave address: {request.slave_address}. "
                f"Address must be between {FIRST_SLAVE_ADDRESS} and {LAST_SLAVE_ADDRESS} inclusive."
            )

        self._logger.info(
            f"Sending function code {request.function_code:#04x} request to slave {request.slave_address}."
        )
        response = self._transport.unicast_message(
            request, response_type, timeout_ms=timeout_ms, cancel_event=cancel_event
        )
        self._logger.debug(f"Received valid response from slave {request.slave_address}: {response}")
        return response


class ModbusSerialMaster(ModbusMaster):
    """A Master speaking Modbus RTU over a pySerial interface.

    This wires a `SerialChannel`, an `RtuFrameCodec` and a `ModbusTransport`
    together so applications only have to provide the serial port.
    """

    def __init__(
        self,
        *,
        interface: serial.Serial,
        transceiver_toggle_time_s: float = DEFAULT_TRANSCEIVER_TOGGLE_TIME_S,
        transmit_mode_pin: Optional[int] = None,
        use_rts_for_transmit_mode: bool = False,
        tx_active_high: bool = True,
        retries: int = DEFAULT_RETRIES,
        wait_to_retry_milliseconds: int = DEFAULT_WAIT_TO_RETRY_MILLISECONDS,
        listeners: Optional[Sequence[DiagnosticsListener]] = None,
        log_level: int = logging.INFO,
    ):
        """Initializes the serial Master.

        Args:
            interface (serial.Serial): A pre-configured pySerial interface. Its
                read timeout is the response timeout
            transceiver_toggle_time_s (float): The time in seconds to wait for
                the RS485 transceiver to switch between transmit and receive modes.
            transmit_mode_pin (Optional[int]): The BCM GPIO pin number used to
                control the transmit enable on an RS485 transceiver.
            use_rts_for_transmit_mode (bool): If True, uses the RTS line for
                controlling the RS485 transceiver.
            tx_active_high (bool): If True, the transmit mode is active when
                the transmit mode pin or RTS line is high. Otherwise, it is active low.
            retries (int): Number of write/read cycles attempted after the first
                one when a transport fault occurs
            wait_to_retry_milliseconds (int): Time to wait after an ACKNOWLEDGE
                or SLAVE_DEVICE_BUSY response
            listeners (Optional[Sequence[DiagnosticsListener]]): Diagnostics listeners
            log_level (int): The logging level for this instance

        Raises:
            ValueError: If the transceiver settings or the retry policy are invalid.
        """
        channel = SerialChannel(
            interface=interface,
            transceiver_toggle_time_s=transceiver_toggle_time_s,
            transmit_mode_pin=transmit_mode_pin,
            use_rts_for_transmit_mode=use_rts_for_transmit_mode,
            tx_active_high=tx_active_high,
            log_level=log_level,
        )
        transport = ModbusTransport(
            channel=channel,
            codec=RtuFrameCodec(log_level=log_level),
            retries=retries,
            wait_to_retry_milliseconds=wait_to_retry_milliseconds,
            listeners=listeners,
            log_level=log_level,
        )
        super().__init__(transport=transport, log_level=log_level)
