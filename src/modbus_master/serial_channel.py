"""A Modbus RTU channel over a pySerial interface."""

import logging
import time
from typing import Optional

import serial

from .channel import Channel
from .exceptions import FrameFormatError, ResponseTimeoutError, TransportIOError
from .protocol import (
    BITS_PER_CHARACTER,
    BYTE_COUNT_FUNCTION_CODES,
    INTER_FRAME_CHARACTERS,
    MIN_INTER_FRAME_TIME_S,
    rtu_response_bytes_to_read,
)
from .utils import get_milliseconds, logger_factory, microseconds_to_seconds

#: Default time (s) to wait for the RS485 transceiver to switch between modes.
DEFAULT_TRANSCEIVER_TOGGLE_TIME_S = microseconds_to_seconds(100)


def calculate_inter_frame_time(baudrate: int) -> float:
    """Returns the silent interval (s) required between two RTU frames.

    Args:
        baudrate (int): The baud rate of the serial line.

    Returns:
        float: 3.5 character times, but never less than 1.75 ms.
    """
    character_time_s = BITS_PER_CHARACTER / baudrate
    return max(character_time_s * INTER_FRAME_CHARACTERS, MIN_INTER_FRAME_TIME_S)


class SerialChannel(Channel):
    """A channel writing and reading Modbus RTU frames on a serial line.

    It manages the serial interface and an optional RS485 transceiver direction
    control, either through the RTS line or through a GPIO pin on a Raspberry
    Pi. Response frames are delimited by reading the fixed part first and
    working out the remaining length from the function code, so the read
    timeout configured on the `serial.Serial` object is the response timeout.

    Attributes:
        _logger (logging.Logger): A logger for this instance.
        _interface (serial.Serial): The pySerial object for communication.
        _transceiver_toggle_time_s (float): Time in seconds to wait for the
            RS485 transceiver to switch between transmit and receive modes.
        _inter_frame_time_s (float): The silent interval enforced between frames.
    """

    def __init__(
        self,
        *,
        interface: serial.Serial,
        transceiver_toggle_time_s: float = DEFAULT_TRANSCEIVER_TOGGLE_TIME_S,
        transmit_mode_pin: Optional[int] = None,
        use_rts_for_transmit_mode: bool = False,
        tx_active_high: bool = True,
        log_level: int = logging.INFO,
    ):
        """Initializes the serial channel.

        Args:
            interface (serial.Serial): A pre-configured pySerial interface object.
                Its read timeout is used as the response timeout.
            transceiver_toggle_time_s (float): The time in seconds to wait for
                the RS485 transceiver to switch between transmit and receive modes.
            transmit_mode_pin (Optional[int]): The BCM GPIO pin number used to
                control the transmit enable on an RS485 transceiver.
            use_rts_for_transmit_mode (bool): If True, uses the RTS line for
                controlling the RS485 transceiver.
            tx_active_high (bool): If True, the transmit mode is active when
                the transmit mode pin or RTS line is high. Otherwise, it is active low.
            log_level (int): The logging level for this instance

        Raises:
            ValueError: If the transceiver toggle time is not a positive float.
            ValueError: If `transmit_mode_pin` and `use_rts_for_transmit_mode` are used at the same time.
        """
        self._logger: logging.Logger = logger_factory.get_logger(self.__class__.__name__, level=log_level)

        self._interface = interface

        if transceiver_toggle_time_s <= 0:
            raise ValueError(
                f"Invalid transceiver toggle time: {transceiver_toggle_time_s}. "
                "It must be a positive float representing seconds."
            )
        self._transceiver_toggle_time_s = transceiver_toggle_time_s

        if transmit_mode_pin is not None and use_rts_for_transmit_mode:
            raise ValueError(
                "Cannot specify both 'transmit_mode_pin' and 'use_rts_for_transmit_mode'. "
                "Choose one method for transceiver control."
            )

        self._transmit_mode_pin = transmit_mode_pin
        self._use_rts_for_transmit_mode = use_rts_for_transmit_mode
        self._tx_active_high = tx_active_high

        self._gpio = None

        self._inter_frame_time_s = calculate_inter_frame_time(self._interface.baudrate)
        self._last_bus_activity = get_milliseconds()

        self._is_open: bool = False

        self._logger.debug(f"Initialized {self.__class__.__name__} on {self._interface.port}")

    def is_open(self) -> bool:
        """Returns True if the channel is open, False otherwise."""
        return self._is_open

    def open(self) -> None:
        """Opens the serial interface and sets up transceiver control."""
        if self._is_open:
            self._logger.warning("Channel is already open. Ignoring redundant open() call.")
            return

        self._logger.debug("Opening channel and initializing transceiver control.")

        self._init_serial_interface()
        self._init_transceiver_control()

        self._is_open = True

    def _init_serial_interface(self) -> None:
        """Initializes the serial interface for the channel."""
        if self._interface.is_open:
            self._logger.debug("Serial interface already open. Skipping initialization.")
            return

        try:
            self._interface.open()
        except serial.SerialException as e:
            self._logger.exception(f"Exception occurred while opening the serial interface: {e}")
            raise TransportIOError(f"Could not open serial interface {self._interface.port}: {e}") from e

    def _init_transceiver_control(self) -> None:
        """Initializes the configured transceiver control method (GPIO or RTS)."""
        if self._transmit_mode_pin is not None:
            self._logger.debug(f"Using GPIO pin {self._transmit_mode_pin} for transceiver control.")
            try:
                import RPi.GPIO as GPIO

                self._gpio = GPIO
            except (ImportError, RuntimeError):
                self._logger.error(
                    "Enable pin configured but RPi.GPIO not available. "
                    "Ensure you are running on a Raspberry Pi with RPi.GPIO installed."
                )
                raise

            self._gpio.setmode(GPIO.BCM)
            self._gpio.setup(self._transmit_mode_pin, GPIO.OUT)

        elif self._use_rts_for_transmit_mode:
            self._logger.debug("Using RTS line for transceiver control.")

        self._disable_transmit_mode()

    def _enable_transmit_mode(self) -> None:
        """Activates the transmit mode on the RS485 transceiver."""
        needs_manual_toggle = self._transmit_mode_pin is not None or self._use_rts_for_transmit_mode
        if not needs_manual_toggle:
            return

        if self._use_rts_for_transmit_mode:
            self._interface.rts = self._tx_active_high
        else:
            self._gpio.output(self._transmit_mode_pin, self._tx_active_high)

        time.sleep(self._transceiver_toggle_time_s)

    def _disable_transmit_mode(self) -> None:
        """Deactivates transmit mode, returning the transceiver to receive mode."""
        needs_manual_toggle = self._transmit_mode_pin is not None or self._use_rts_for_transmit_mode
        if not needs_manual_toggle:
            return

        if self._use_rts_for_transmit_mode:
            self._interface.rts = not self._tx_active_high
        else:
            self._gpio.output(self._transmit_mode_pin, not self._tx_active_high)

        time.sleep(self._transceiver_toggle_time_s)

    def _wait_for_line_ready(self) -> None:
        """Waits until the line has been silent for the inter-frame time."""
        silent_s = (get_milliseconds() - self._last_bus_activity) / 1000
        if silent_s < self._inter_frame_time_s:
            time.sleep(self._inter_frame_time_s - silent_s)

    def write(self, frame: bytes) -> None:
        """Writes a request frame and waits until it has left the UART.

        Stale bytes left in the input buffer (for example a late reply to a
        previous, timed out request) are discarded first so they cannot be
        mistaken for the response to this frame.
        """
        self._wait_for_line_ready()
        self._logger.debug(f"Writing frame: {frame.hex()}")

        try:
            self._interface.reset_input_buffer()
            self._enable_transmit_mode()
            self._interface.write(frame)

            # Start with a standard safety margin for the sleep duration to account for OS/hardware latency.
            safety_margin_factor = 1.1

            # Stage 1: make sure the OS buffer is empty so the sleep below starts
            # once the OS has handed all data to the hardware UART.
            try:
                self._interface.flush()
            except AttributeError:
                # Without flush() we cannot tell when the OS is done, so widen the margin.
                safety_margin_factor = 1.2

            # Stage 2: wait for the UART to shift every bit of the frame onto the wire.
            transmission_time_s = (
                (len(frame) * BITS_PER_CHARACTER) / self._interface.baudrate
            ) * safety_margin_factor

            self._logger.debug(f"Frame transmission time: {transmission_time_s:.4f} seconds")

            time.sleep(transmission_time_s)
        except serial.SerialTimeoutException as e:
            raise ResponseTimeoutError(f"Timed out writing frame: {e}") from e
        except (serial.SerialException, OSError) as e:
            raise TransportIOError(f"Serial communication error while writing frame: {e}") from e
        finally:
            # Always return to receive mode.
            self._disable_transmit_mode()
            self._last_bus_activity = get_milliseconds()

    def _read_exactly(self, size: int) -> bytes:
        """Reads `size` bytes, raising if the interface times out first."""
        try:
            data = self._interface.read(size)
        except (serial.SerialException, OSError) as e:
            raise TransportIOError(f"Serial communication error while reading response: {e}") from e

        if len(data) != size:
            raise ResponseTimeoutError(
                f"The operation has timed out. Expected {size} bytes, received {len(data)}: {bytes(data).hex()}"
            )

        return bytes(data)

    def read_response(self) -> bytes:
        """Reads one complete RTU response frame."""
        frame = self._read_exactly(2)

        if frame[1] in BYTE_COUNT_FUNCTION_CODES:
            frame += self._read_exactly(1)

        try:
            bytes_to_read = rtu_response_bytes_to_read(frame)
        except ValueError as e:
            # Nothing tells us where this frame ends, so drop whatever is left of it.
            try:
                self._interface.reset_input_buffer()
            except (serial.SerialException, OSError) as io_error:
                raise TransportIOError(
                    f"Serial communication error while discarding an undelimited frame: {io_error}"
                ) from io_error
            raise FrameFormatError(f"Cannot delimit response frame {frame.hex()}: {e}") from e

        frame += self._read_exactly(bytes_to_read)
        self._last_bus_activity = get_milliseconds()

        self._logger.debug(f"Read frame: {frame.hex()}")
        return frame

    def close(self) -> None:
        """Closes the serial port and cleans up GPIO pins.

        This method should be called when the channel is no longer needed to
        ensure that all underlying hardware resources are released properly.
        """
        if not self._is_open:
            self._logger.warning("Channel is already closed. Ignoring redundant close() call.")
            return

        self._logger.info("Closing channel and cleaning up GPIO pins.")

        if self._interface and self._interface.is_open:
            self._interface.close()
            self._logger.debug("Serial interface closed.")

        if self._gpio:
            self._gpio.cleanup()
            self._gpio = None
            self._logger.debug("GPIO pins cleaned up.")

        self._is_open = False
