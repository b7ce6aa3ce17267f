"""Defines the retry policy owned by each exchange engine."""

from dataclasses import dataclass

from .protocol import DEFAULT_RETRIES, DEFAULT_WAIT_TO_RETRY_MILLISECONDS


@dataclass(frozen=True)
class TransportConfig:
    """The retry policy of a `ModbusTransport`.

    Attributes:
        retries (int): Number of full write/read cycles attempted after the
            first one when a transport fault (timeout, I/O error, corrupt or
            mismatched response) occurs. Total attempts are `retries + 1`.
        wait_to_retry_milliseconds (int): Time to wait before re-reading after
            an ACKNOWLEDGE response, or before resubmitting after a
            SLAVE_DEVICE_BUSY response. Zero is accepted and means no wait.
    """

    retries: int = DEFAULT_RETRIES
    wait_to_retry_milliseconds: int = DEFAULT_WAIT_TO_RETRY_MILLISECONDS

    def __post_init__(self):
        if self.retries < 0:
            raise ValueError(f"Invalid retries: {self.retries}. It must be a non-negative integer.")

        if self.wait_to_retry_milliseconds < 0:
            raise ValueError(
                f"Invalid wait to retry: {self.wait_to_retry_milliseconds} ms. It must be a non-negative integer."
            )

    @property
    def max_attempts(self) -> int:
        """Total number of write/read cycles allowed for transport faults."""
        return self.retries + 1
