"""Unit tests for the `RtuFrameCodec`.

These tests check that frames carry the slave address and CRC, and that
decoding dispatches to the data or exception variant based on the function
code, rejecting frames that are truncated or fail their checksum.
"""

import pytest

from modbus_master.codec import ResponseKind, RtuFrameCodec
from modbus_master.exceptions import FrameFormatError
from modbus_master.models import ReadRegistersRequest, ReadRegistersResponse
from modbus_master.protocol import FunctionCode, SlaveExceptionCode
from tests.conftest import corrupt, exception_frame, rtu_frame, with_crc


@pytest.fixture
def codec():
    return RtuFrameCodec()


def test_build_message_frame(codec):
    request = ReadRegistersRequest(
        slave_address=1, function_code=FunctionCode.READ_HOLDING_REGISTERS, start_address=0, quantity=10
    )
    assert codec.build_message_frame(request) == bytes.fromhex("01030000000ac5cd")


def test_create_response_decodes_data_response(codec):
    frame = with_crc(bytes.fromhex("0103020005"))

    decoded = codec.create_response(frame, ReadRegistersResponse)

    assert decoded.kind is ResponseKind.DATA
    assert decoded.exception is None
    assert decoded.message == ReadRegistersResponse(
        slave_address=1, function_code=FunctionCode.READ_HOLDING_REGISTERS, registers=(5,)
    )


def test_create_response_decodes_exception_response(codec):
    frame = exception_frame(1, FunctionCode.READ_HOLDING_REGISTERS, SlaveExceptionCode.ILLEGAL_DATA_ADDRESS)

    decoded = codec.create_response(frame, ReadRegistersResponse)

    assert decoded.kind is ResponseKind.EXCEPTION
    assert decoded.message is None
    assert decoded.exception.exception_code == SlaveExceptionCode.ILLEGAL_DATA_ADDRESS
    assert decoded.exception.request_function_code == FunctionCode.READ_HOLDING_REGISTERS


def test_create_response_rejects_bad_crc(codec):
    frame = corrupt(with_crc(bytes.fromhex("0103020005")))

    with pytest.raises(FrameFormatError, match="Checksums failed to match"):
        codec.create_response(frame, ReadRegistersResponse)


def test_create_response_rejects_short_frame(codec):
    with pytest.raises(FrameFormatError):
        codec.create_response(bytes.fromhex("0103"), ReadRegistersResponse)


def test_create_response_rejects_truncated_pdu_with_valid_crc(codec):
    # Byte count says 4 but only 2 data bytes follow.
    frame = with_crc(bytes.fromhex("0103040005"))

    with pytest.raises(FrameFormatError):
        codec.create_response(frame, ReadRegistersResponse)


def test_frames_round_trip_through_the_codec(codec):
    response = ReadRegistersResponse(
        slave_address=7, function_code=FunctionCode.READ_INPUT_REGISTERS, registers=(1, 2, 3)
    )
    assert codec.create_response(rtu_frame(response), ReadRegistersResponse).message == response
