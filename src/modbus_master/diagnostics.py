"""Structured events emitted by the exchange engine.

Every retry after a transport fault and every wait after an ACKNOWLEDGE or
SLAVE_DEVICE_BUSY response produces one event. Events are informational only:
an exception raised by a listener is logged and otherwise ignored.

Listeners are called synchronously on the exchanging thread. Events about an
ACKNOWLEDGE wait are delivered while the transport holds the bus lock, so a
listener should return quickly and hand slow work (file or network I/O) to
another thread.
"""

from dataclasses import dataclass
from typing import Callable, Union


@dataclass(frozen=True)
class RetryEvent:
    """A transport fault was observed during an exchange.

    Attributes:
        fault_kind (str): The exception class name, e.g. "ResponseTimeoutError"
        message (str): The fault's message
        attempt (int): The attempt that failed, starting at 1
        retries_remaining (int): Full write/read cycles still allowed. Zero
            means the fault is about to be propagated to the caller.
    """

    fault_kind: str
    message: str
    attempt: int
    retries_remaining: int


@dataclass(frozen=True)
class WaitEvent:
    """The engine is about to wait on a slave that acknowledged or was busy.

    Attributes:
        slave_address (int): The slave that sent the exception response
        exception_code (int): ACKNOWLEDGE or SLAVE_DEVICE_BUSY
        wait_ms (int): How long the engine waits
        resubmit (bool): True if the request is sent again after the wait,
            False if only the response is read again
    """

    slave_address: int
    exception_code: int
    wait_ms: int
    resubmit: bool


DiagnosticEvent = Union[RetryEvent, WaitEvent]

DiagnosticsListener = Callable[[DiagnosticEvent], None]
