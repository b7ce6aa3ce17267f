"""Defines the static constants, enums, and rules of the Modbus protocol.

This module serves as the single source of truth for protocol-specific values,
including the exception offset used to flag exception responses, default retry
settings, address ranges, function and exception codes, and the rules used to
figure out how long an incoming RTU response frame is.
"""

from enum import IntEnum

# -- Exchange Configuration --

#: A response function code above this value marks a slave exception response.
EXCEPTION_OFFSET = 0x80

#: Default number of additional write/read cycles after the first attempt.
DEFAULT_RETRIES = 3

#: Default time (ms) to wait after an ACKNOWLEDGE or SLAVE_DEVICE_BUSY response.
DEFAULT_WAIT_TO_RETRY_MILLISECONDS = 250


# -- Address Configuration --

#: The reserved address for sending a message to all slaves simultaneously.
BROADCAST_ADDRESS = 0

#: The first valid unicast slave address.
FIRST_SLAVE_ADDRESS = 1

#: The last valid unicast slave address.
LAST_SLAVE_ADDRESS = 247


# -- Frame Configuration --

#: Maximum size of an RTU frame, in bytes.
MAX_RTU_FRAME_LEN = 256

#: Smallest possible RTU frame: address, function code and CRC.
MIN_RTU_FRAME_LEN = 4

#: Bits on the wire per RTU character (start, 8 data, parity or stop, stop).
BITS_PER_CHARACTER = 11

#: Silent interval between frames, in character times.
INTER_FRAME_CHARACTERS = 3.5

#: Lower bound (s) for the inter-frame silence at baud rates above 19200.
MIN_INTER_FRAME_TIME_S = 0.00175


# -- Quantity Limits --

MAX_READ_BITS = 2000
MAX_READ_REGISTERS = 125
MAX_WRITE_COILS = 1968
MAX_WRITE_REGISTERS = 123

#: Value sent in a write single coil request to switch the coil on.
COIL_ON = 0xFF00
COIL_OFF = 0x0000


class FunctionCode(IntEnum):
    """Function codes supported by the master."""

    READ_COILS = 0x01
    READ_DISCRETE_INPUTS = 0x02
    READ_HOLDING_REGISTERS = 0x03
    READ_INPUT_REGISTERS = 0x04
    WRITE_SINGLE_COIL = 0x05
    WRITE_SINGLE_REGISTER = 0x06
    WRITE_MULTIPLE_COILS = 0x0F
    WRITE_MULTIPLE_REGISTERS = 0x10


class SlaveExceptionCode(IntEnum):
    """Exception codes a slave can report in an exception response."""

    ILLEGAL_FUNCTION = 0x01
    ILLEGAL_DATA_ADDRESS = 0x02
    ILLEGAL_DATA_VALUE = 0x03
    SLAVE_DEVICE_FAILURE = 0x04
    #: The slave accepted the request and is still processing it.
    #: The master should read again without resubmitting.
    ACKNOWLEDGE = 0x05
    #: The slave cannot process the request now. The master should resubmit later.
    SLAVE_DEVICE_BUSY = 0x06
    MEMORY_PARITY_ERROR = 0x08
    GATEWAY_PATH_UNAVAILABLE = 0x0A
    GATEWAY_TARGET_DEVICE_FAILED_TO_RESPOND = 0x0B


#: Function codes whose responses carry a byte count right after the function code.
BYTE_COUNT_FUNCTION_CODES = frozenset(
    {
        FunctionCode.READ_COILS,
        FunctionCode.READ_DISCRETE_INPUTS,
        FunctionCode.READ_HOLDING_REGISTERS,
        FunctionCode.READ_INPUT_REGISTERS,
    }
)

#: Function codes whose responses have a fixed 4 byte body (address/value or address/quantity).
FIXED_LENGTH_FUNCTION_CODES = frozenset(
    {
        FunctionCode.WRITE_SINGLE_COIL,
        FunctionCode.WRITE_SINGLE_REGISTER,
        FunctionCode.WRITE_MULTIPLE_COILS,
        FunctionCode.WRITE_MULTIPLE_REGISTERS,
    }
)


def describe_exception_code(code: int) -> str:
    """Returns a readable name for a slave exception code, known or not."""
    try:
        return SlaveExceptionCode(code).name
    except ValueError:
        return f"UNKNOWN_EXCEPTION_CODE_{code}"


def is_exception_function_code(function_code: int) -> bool:
    """Checks if a response function code flags a slave exception response.

    Args:
        function_code (int): The function code found in a response frame.

    Returns:
        bool: True if the frame is an exception report, False otherwise.
    """
    return function_code > EXCEPTION_OFFSET


def is_valid_slave_address(address: int) -> bool:
    """Checks if a given address can be the target of a unicast request.

    Args:
        address (int): The address to validate.

    Returns:
        bool: True if the address is a valid slave address, False otherwise.
    """
    return FIRST_SLAVE_ADDRESS <= address <= LAST_SLAVE_ADDRESS


def rtu_response_bytes_to_read(header: bytes) -> int:
    """Returns how many bytes of an RTU response are left to read.

    The master first reads the fixed part of the frame that tells it what kind
    of response is coming. For exception responses and fixed length responses
    that is the slave address and function code. For the read responses it is
    the slave address, function code and byte count.

    Args:
        header (bytes): The bytes read so far. At least the address and the
            function code, plus the byte count for read responses.

    Returns:
        int: The number of bytes still to read, including the 2 CRC bytes.

    Raises:
        ValueError: If the function code is not supported.
    """
    function_code = header[1]

    if is_exception_function_code(function_code):
        # Exception code + CRC
        return 1 + 2

    if function_code in FIXED_LENGTH_FUNCTION_CODES:
        return 4 + 2

    if function_code in BYTE_COUNT_FUNCTION_CODES:
        if len(header) < 3:
            # The byte count still has to be read.
            return 1
        return header[2] + 2

    raise ValueError(f"Function code {function_code:#04x} is not supported.")
