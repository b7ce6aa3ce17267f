"""Unit tests for the `SerialChannel`.

These tests run the channel against the `MockSerial` port from `conftest.py`
and check frame delimiting, the mapping of pySerial failures onto the
library's faults, and RS485 transceiver direction control.
"""

import itertools

import pytest
import serial

from modbus_master.exceptions import FrameFormatError, ResponseTimeoutError, TransportIOError
from modbus_master.models import ReadRegistersRequest, ReadRegistersResponse
from modbus_master.protocol import FunctionCode
from modbus_master.serial_channel import SerialChannel, calculate_inter_frame_time
from modbus_master.transport import ModbusTransport
from tests.conftest import exception_frame, with_crc

READ_RESPONSE = with_crc(bytes.fromhex("010304000a0102"))
WRITE_RESPONSE = with_crc(bytes.fromhex("011000010002"))
EXCEPTION_RESPONSE = exception_frame(1, 0x03, 0x02)


@pytest.fixture
def channel(mock_serial_port):
    serial_channel = SerialChannel(interface=mock_serial_port)
    serial_channel.open()
    yield serial_channel
    serial_channel.close()


@pytest.mark.parametrize("frame", [READ_RESPONSE, WRITE_RESPONSE, EXCEPTION_RESPONSE])
def test_read_response_reads_exactly_one_frame(channel, mock_serial_port, frame):
    trailing = bytes.fromhex("0102")
    mock_serial_port.feed(frame + trailing)

    assert channel.read_response() == frame
    # Whatever follows belongs to the next frame.
    assert mock_serial_port.in_waiting == len(trailing)


def test_write_sends_the_frame_and_discards_stale_input(channel, mock_serial_port):
    mock_serial_port.feed(b"\x99\x99")
    mock_serial_port.responder = lambda frame: READ_RESPONSE

    channel.write(bytes.fromhex("01030000000ac5cd"))

    assert mock_serial_port.written == [bytes.fromhex("01030000000ac5cd")]
    assert channel.read_response() == READ_RESPONSE


def test_read_response_times_out_without_data(channel):
    with pytest.raises(ResponseTimeoutError):
        channel.read_response()


def test_read_response_times_out_on_a_partial_frame(channel, mock_serial_port):
    mock_serial_port.feed(READ_RESPONSE[:-3])

    with pytest.raises(ResponseTimeoutError):
        channel.read_response()


def test_read_response_rejects_unknown_function_code(channel, mock_serial_port):
    mock_serial_port.feed(bytes.fromhex("012b0e01"))

    with pytest.raises(FrameFormatError):
        channel.read_response()

    assert mock_serial_port.in_waiting == 0


def test_failure_discarding_an_undelimited_frame_becomes_transport_io_error(channel, mock_serial_port, mocker):
    mock_serial_port.feed(bytes.fromhex("112b0e01"))
    mocker.patch.object(mock_serial_port, "reset_input_buffer", side_effect=serial.SerialException("port gone"))

    with pytest.raises(TransportIOError):
        channel.read_response()


def test_failure_discarding_an_undelimited_frame_is_retried(channel, mock_serial_port, mocker):
    mock_serial_port.responder = lambda frame: bytes.fromhex("112b0e01")
    clear_input = mock_serial_port.reset_input_buffer
    flush_calls = itertools.count()

    def reset_input_buffer():
        clear_input()
        # Writes flush first and succeed, the flush after the undelimited read fails.
        if next(flush_calls) % 2:
            raise serial.SerialException("port gone")

    mocker.patch.object(mock_serial_port, "reset_input_buffer", side_effect=reset_input_buffer)
    transport = ModbusTransport(channel=channel, retries=1)
    request = ReadRegistersRequest(
        slave_address=0x11, function_code=FunctionCode.READ_HOLDING_REGISTERS, start_address=0, quantity=1
    )

    with pytest.raises(TransportIOError):
        transport.unicast_message(request, ReadRegistersResponse)

    assert len(mock_serial_port.written) == 2


def test_serial_errors_become_transport_io_errors(channel, mock_serial_port, mocker):
    mocker.patch.object(mock_serial_port, "read", side_effect=serial.SerialException("device reports readiness"))

    with pytest.raises(TransportIOError):
        channel.read_response()


def test_write_timeout_becomes_response_timeout(channel, mock_serial_port, mocker):
    mocker.patch.object(mock_serial_port, "write", side_effect=serial.SerialTimeoutException("Write timeout"))

    with pytest.raises(ResponseTimeoutError):
        channel.write(b"\x01\x03")


def test_write_toggles_rts_for_transmit_mode(mock_serial_port):
    serial_channel = SerialChannel(interface=mock_serial_port, use_rts_for_transmit_mode=True)
    serial_channel.open()
    mock_serial_port.rts_history.clear()

    serial_channel.write(b"\x01\x03")

    # Transmit mode on, then back to receive mode.
    assert mock_serial_port.rts_history == [True, False]


def test_write_drives_gpio_pin_for_transmit_mode(mock_serial_port, mock_rpi_gpio):
    serial_channel = SerialChannel(interface=mock_serial_port, transmit_mode_pin=17)
    serial_channel.open()
    mock_rpi_gpio.output.reset_mock()

    serial_channel.write(b"\x01\x03")

    assert [c.args for c in mock_rpi_gpio.output.call_args_list] == [(17, True), (17, False)]

    serial_channel.close()
    mock_rpi_gpio.cleanup.assert_called_once()


def test_returns_to_receive_mode_when_write_fails(mock_serial_port, mocker):
    serial_channel = SerialChannel(interface=mock_serial_port, use_rts_for_transmit_mode=True)
    serial_channel.open()
    mock_serial_port.rts_history.clear()
    mocker.patch.object(mock_serial_port, "write", side_effect=serial.SerialException("Port gone"))

    with pytest.raises(TransportIOError):
        serial_channel.write(b"\x01\x03")

    assert mock_serial_port.rts_history[-1] is False


def test_pin_and_rts_cannot_be_combined(mock_serial_port):
    with pytest.raises(ValueError):
        SerialChannel(interface=mock_serial_port, transmit_mode_pin=17, use_rts_for_transmit_mode=True)


def test_invalid_transceiver_toggle_time(mock_serial_port):
    with pytest.raises(ValueError):
        SerialChannel(interface=mock_serial_port, transceiver_toggle_time_s=0)


def test_close_closes_the_interface(mock_serial_port):
    serial_channel = SerialChannel(interface=mock_serial_port)
    serial_channel.open()

    serial_channel.close()

    assert not serial_channel.is_open()
    assert not mock_serial_port.is_open


@pytest.mark.parametrize(
    "baudrate, expected",
    [
        (9600, 11 / 9600 * 3.5),
        (115200, 0.00175),  # Fixed lower bound above 19200 baud.
    ],
)
def test_calculate_inter_frame_time(baudrate, expected):
    assert calculate_inter_frame_time(baudrate) == pytest.approx(expected)
