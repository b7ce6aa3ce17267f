"""Defines the frame codec boundary and the Modbus RTU codec.

A codec turns a typed request into a raw frame and a raw frame back into a
typed response. Decoding returns a `DecodedResponse`, a tagged result that says
once, at decode time, whether the frame was a data response or a slave
exception response, so the exchange engine never has to inspect types.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, Type

from .exceptions import FrameFormatError
from .models import ModbusMessage, ResponseT, SlaveExceptionResponse
from .protocol import MAX_RTU_FRAME_LEN, MIN_RTU_FRAME_LEN, is_exception_function_code
from .utils import calculate_crc, logger_factory


class ResponseKind(Enum):
    """The two variants a decoded response frame can be."""

    DATA = "data"
    EXCEPTION = "exception"


@dataclass(frozen=True)
class DecodedResponse(Generic[ResponseT]):
    """The result of decoding a response frame.

    Exactly one of `message` and `exception` is set, matching `kind`.

    Attributes:
        kind (ResponseKind): Which variant the frame decoded to
        message (Optional[ResponseT]): The data response, for `ResponseKind.DATA`
        exception (Optional[SlaveExceptionResponse]): The exception response,
            for `ResponseKind.EXCEPTION`
    """

    kind: ResponseKind
    message: Optional[ResponseT] = None
    exception: Optional[SlaveExceptionResponse] = None

    @classmethod
    def data(cls, message: ResponseT) -> "DecodedResponse[ResponseT]":
        return cls(kind=ResponseKind.DATA, message=message)

    @classmethod
    def slave_exception(cls, exception: SlaveExceptionResponse) -> "DecodedResponse[ResponseT]":
        return cls(kind=ResponseKind.EXCEPTION, exception=exception)


class FrameCodec(ABC):
    """The capability the exchange engine needs to put messages on the wire."""

    @abstractmethod
    def build_message_frame(self, message: ModbusMessage) -> bytes:
        """Serializes a message into a raw frame.

        This must be a pure function of the message. Failures are programming
        errors and are never retried.
        """
        pass

    @abstractmethod
    def create_response(self, frame: bytes, response_type: Type[ResponseT]) -> DecodedResponse[ResponseT]:
        """Parses a raw response frame.

        Args:
            frame (bytes): The raw frame read from the channel
            response_type (Type[ResponseT]): The data response expected for the
                request that was sent

        Returns:
            DecodedResponse[ResponseT]: The data response, or the slave exception
                response if the function code flags one.

        Raises:
            FrameFormatError: If the frame is malformed or truncated.
        """
        pass


class RtuFrameCodec(FrameCodec):
    """Codec for Modbus RTU frames: slave address, PDU and a CRC-16, low byte first."""

    def __init__(self, *, log_level: int = logging.INFO):
        self._logger = logger_factory.get_logger(self.__class__.__name__, level=log_level)

    def build_message_frame(self, message: ModbusMessage) -> bytes:
        body = bytes([message.slave_address]) + message.pdu
        frame = body + calculate_crc(body)

        if len(frame) > MAX_RTU_FRAME_LEN:
            raise ValueError(f"Frame length exceeds maximum length of {MAX_RTU_FRAME_LEN} bytes.")

        self._logger.debug(f"Built frame: {frame.hex()}")
        return frame

    def create_response(self, frame: bytes, response_type: Type[ResponseT]) -> DecodedResponse[ResponseT]:
        if len(frame) < MIN_RTU_FRAME_LEN:
            raise FrameFormatError(
                f"Frame is too short. Expected at least {MIN_RTU_FRAME_LEN} bytes, received {len(frame)}: {frame.hex()}"
            )

        body, received_crc = frame[:-2], frame[-2:]
        expected_crc = calculate_crc(body)
        if received_crc != expected_crc:
            raise FrameFormatError(
                f"Checksums failed to match. Expected {expected_crc.hex()}, received {received_crc.hex()}."
            )

        slave_address, pdu = body[0], body[1:]
        self._logger.debug(f"Decoding frame from slave {slave_address}: {frame.hex()}")

        # Check for a slave exception response.
        if is_exception_function_code(pdu[0]):
            return DecodedResponse.slave_exception(SlaveExceptionResponse.from_pdu(slave_address, pdu))

        return DecodedResponse.data(response_type.from_pdu(slave_address, pdu))
