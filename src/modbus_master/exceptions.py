"""Custom exceptions used within the library.

This module defines a hierarchy of exceptions for the faults that can occur
during a request-response exchange, from the master's perspective. The split
matters to callers: a `TransportError` means the bus is unreliable and the
exchange was retried until the budget ran out, while a `SlaveException` means
the device refused this specific request.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import SlaveExceptionResponse


class ModbusError(Exception):
    """Base exception for every error raised by the library."""

    pass


class TransportError(ModbusError):
    """Base class for retry-eligible faults.

    The exchange engine retries the whole write/read cycle when one of these is
    raised, until the retry budget is used up. The last one seen is then
    propagated to the caller.
    """

    pass


class FrameFormatError(TransportError):
    """Raised when a received frame is malformed, truncated or fails its CRC."""

    pass


class ResponseTimeoutError(TransportError):
    """Raised when no complete response frame arrives within the channel's timeout."""

    pass


class TransportIOError(TransportError):
    """Raised for lower-level channel errors (port disconnected, broken pipe, etc.)."""

    pass


class ResponseValidationError(TransportError):
    """Raised when a well-formed response does not answer the request that was sent.

    Attributes:
        expected (int): The value taken from the request.
        received (int): The value found in the response.
    """

    def __init__(self, message: str, *, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(message)


class FunctionCodeMismatchError(ResponseValidationError):
    """Raised when the response's function code differs from the request's."""

    pass


class SlaveAddressMismatchError(ResponseValidationError):
    """Raised when the response's slave address differs from the request's."""

    pass


class SlaveException(ModbusError):
    """Raised when a slave answers with a terminal exception response.

    Attributes:
        response (SlaveExceptionResponse): The exception response received.
        exception_code (int): The slave exception code it carries.
    """

    def __init__(self, response: "SlaveExceptionResponse"):
        """Initializes the SlaveException.

        Args:
            response (SlaveExceptionResponse): The exception response received.
        """
        self.response = response
        self.exception_code = response.exception_code
        super().__init__(str(response))


class ExchangeAbortedError(ModbusError):
    """Base class for exchanges given up while waiting on a busy or acknowledging slave.

    Attributes:
        last_response (Optional[SlaveExceptionResponse]): The last exception
            response that made the master wait, if any.
    """

    def __init__(self, message: str, last_response: Optional["SlaveExceptionResponse"] = None):
        self.last_response = last_response
        super().__init__(message)


class ExchangeCancelledError(ExchangeAbortedError):
    """Raised when the caller's cancel event is set during a wait."""

    pass


class ExchangeDeadlineExceededError(ExchangeAbortedError):
    """Raised when the caller's timeout for the whole exchange expires."""

    pass
