"""Provides the exchange engine shared by every caller talking to one channel."""

import logging
import threading
import time
from typing import Iterable, List, Optional, Type

from .channel import Channel
from .codec import DecodedResponse, FrameCodec, ResponseKind, RtuFrameCodec
from .config import TransportConfig
from .diagnostics import DiagnosticEvent, DiagnosticsListener, RetryEvent, WaitEvent
from .exceptions import (
    ExchangeCancelledError,
    ExchangeDeadlineExceededError,
    FunctionCodeMismatchError,
    SlaveAddressMismatchError,
    SlaveException,
    TransportError,
)
from .models import ModbusMessage, ModbusResponse, ResponseT, SlaveExceptionResponse
from .protocol import DEFAULT_RETRIES, DEFAULT_WAIT_TO_RETRY_MILLISECONDS, SlaveExceptionCode
from .utils import get_milliseconds, logger_factory, milliseconds_to_seconds


class ModbusTransport:
    """A thread-safe, synchronous request/response engine for one channel.

    `unicast_message` writes a request, reads the response, and decides what
    to do with the outcome:

    - A data response is validated against the request and returned.
    - A transport fault (corrupt frame, timeout, I/O error, or a response for
      another slave or function) uses up one attempt and resubmits the request.
      Once `retries + 1` attempts have failed, the last fault is raised.
    - An ACKNOWLEDGE exception response makes the engine wait and read again
      without resubmitting. It does not use up an attempt.
    - A SLAVE_DEVICE_BUSY exception response makes the engine wait and
      resubmit. It does not use up an attempt.
    - Any other exception response is raised at once as a `SlaveException`.

    The channel lock is held from the write until the final read, so two
    callers never interleave frames. It is released before validation and
    before waiting on a busy slave, so other callers can use the bus in the
    meantime. The wait after ACKNOWLEDGE happens with the lock held, because
    the next read has to pick up this exchange's response.

    Attributes:
        _channel (Channel): The channel frames are written to and read from
        _codec (FrameCodec): Turns messages into frames and back
        _config (TransportConfig): The retry policy
        _sync_lock (threading.Lock): Serializes exchanges on the channel
        _config_lock (threading.Lock): Guards `_config` and `_listeners`
    """

    def __init__(
        self,
        *,
        channel: Channel,
        codec: Optional[FrameCodec] = None,
        retries: int = DEFAULT_RETRIES,
        wait_to_retry_milliseconds: int = DEFAULT_WAIT_TO_RETRY_MILLISECONDS,
        listeners: Optional[Iterable[DiagnosticsListener]] = None,
        log_level: int = logging.INFO,
    ):
        """Initializes the transport.

        Args:
            channel (Channel): The channel to exchange frames over
            codec (Optional[FrameCodec]): The frame codec. Defaults to
                `RtuFrameCodec`
            retries (int): Number of write/read cycles attempted after the
                first one when a transport fault occurs
            wait_to_retry_milliseconds (int): Time to wait after an ACKNOWLEDGE
                or SLAVE_DEVICE_BUSY response
            listeners (Optional[Iterable[DiagnosticsListener]]): Callables
                receiving a `RetryEvent` or `WaitEvent` for every retry and wait
            log_level (int): The logging level for this instance

        Raises:
            ValueError: If `retries` or `wait_to_retry_milliseconds` is negative.
        """
        self._logger: logging.Logger = logger_factory.get_logger(self.__class__.__name__, level=log_level)

        self._channel = channel
        self._codec = codec if codec is not None else RtuFrameCodec(log_level=log_level)
        self._config = TransportConfig(retries=retries, wait_to_retry_milliseconds=wait_to_retry_milliseconds)
        self._listeners: List[DiagnosticsListener] = list(listeners or [])

        self._sync_lock = threading.Lock()
        self._config_lock = threading.Lock()

        self._logger.debug(f"Initialized {self.__class__.__name__} with {self._config}")

    def __enter__(self) -> "ModbusTransport":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def open(self) -> None:
        """Opens the underlying channel."""
        self._channel.open()

    def close(self) -> None:
        """Closes the underlying channel."""
        self._channel.close()

    def is_open(self) -> bool:
        """Returns True if the underlying channel is open, False otherwise."""
        return self._channel.is_open()

    @property
    def channel(self) -> Channel:
        return self._channel

    @property
    def codec(self) -> FrameCodec:
        return self._codec

    def get_config(self) -> TransportConfig:
        """Returns the current retry policy."""
        with self._config_lock:
            return self._config

    def get_retries(self) -> int:
        """Returns the number of write/read cycles attempted after the first one."""
        return self.get_config().retries

    def set_retries(self, retries: int) -> None:
        """Sets the number of write/read cycles attempted after the first one.

        Exchanges already running keep the value they started with.

        Args:
            retries (int): The new value.

        Raises:
            ValueError: If `retries` is negative.
        """
        with self._config_lock:
            self._config = TransportConfig(
                retries=retries, wait_to_retry_milliseconds=self._config.wait_to_retry_milliseconds
            )
        self._logger.info(f"Retries set to {retries}.")

    def get_wait_to_retry_milliseconds(self) -> int:
        """Returns the time waited after an ACKNOWLEDGE or SLAVE_DEVICE_BUSY response."""
        return self.get_config().wait_to_retry_milliseconds

    def set_wait_to_retry_milliseconds(self, wait_to_retry_milliseconds: int) -> None:
        """Sets the time waited after an ACKNOWLEDGE or SLAVE_DEVICE_BUSY response.

        Exchanges already running keep the value they started with.

        Args:
            wait_to_retry_milliseconds (int): The new value. Zero is accepted.

        Raises:
            ValueError: If the value is negative.
        """
        with self._config_lock:
            self._config = TransportConfig(
                retries=self._config.retries, wait_to_retry_milliseconds=wait_to_retry_milliseconds
            )
        self._logger.info(f"Wait to retry set to {wait_to_retry_milliseconds} ms.")

    def add_listener(self, listener: DiagnosticsListener) -> None:
        """Registers a callable receiving every `RetryEvent` and `WaitEvent`.

        The listener runs on the thread doing the exchange. Events about an
        ACKNOWLEDGE wait are delivered while the bus is locked, so a slow
        listener delays every other caller of this transport.
        """
        with self._config_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: DiagnosticsListener) -> None:
        """Unregisters a listener added with `add_listener`.

        Raises:
            ValueError: If the listener was never registered.
        """
        with self._config_lock:
            self._listeners.remove(listener)

    def unicast_message(
        self,
        request: ModbusMessage,
        response_type: Type[ResponseT],
        *,
        timeout_ms: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ResponseT:
        """Sends a request to a single slave and returns its validated response.

        This method blocks the calling thread for the whole exchange, waits
        included. Without `timeout_ms` or `cancel_event` a slave that keeps
        answering ACKNOWLEDGE or SLAVE_DEVICE_BUSY keeps the caller waiting
        indefinitely.

        Args:
            request (ModbusMessage): The request to send
            response_type (Type[ResponseT]): The data response expected
            timeout_ms (Optional[int]): Upper bound, in milliseconds from now,
                on the time spent waiting on an acknowledging or busy slave.
                Checked before every such wait, and no wait runs past it
            cancel_event (Optional[threading.Event]): When set, any ongoing or
                upcoming wait on an acknowledging or busy slave is aborted

        Returns:
            ResponseT: The response, with the request's slave address and
                function code.

        Raises:
            TransportError: The last transport fault, once all `retries + 1`
                attempts have failed.
            SlaveException: If the slave answered with a terminal exception
                response.
            ExchangeDeadlineExceededError: If `timeout_ms` expired.
            ExchangeCancelledError: If `cancel_event` was set.
            ValueError: If `timeout_ms` is negative.
        """
        if timeout_ms is not None and timeout_ms < 0:
            raise ValueError(f"Invalid timeout: {timeout_ms} ms. It must be a non-negative integer.")

        # The policy is fixed for the whole exchange.
        config = self.get_config()
        deadline_ms = get_milliseconds() + timeout_ms if timeout_ms is not None else None
        attempt = 1

        while True:
            try:
                with self._sync_lock:
                    self._write(request)
                    decoded = self._read_response(response_type, config, deadline_ms, cancel_event)

                if decoded.kind is ResponseKind.EXCEPTION:
                    exception_response = decoded.exception
                    if exception_response.exception_code != SlaveExceptionCode.SLAVE_DEVICE_BUSY:
                        raise SlaveException(exception_response)

                    self._logger.info(
                        f"Received SLAVE_DEVICE_BUSY exception response, waiting "
                        f"{config.wait_to_retry_milliseconds} milliseconds and resubmitting request."
                    )
                    self._wait_to_retry(exception_response, config, True, deadline_ms, cancel_event)
                    continue

                response = decoded.message
                self.validate_response(request, response)
                return response

            except TransportError as e:
                retries_remaining = config.max_attempts - attempt
                self._logger.error(f"{type(e).__name__}, {retries_remaining} retries remaining - {e}")
                self._emit(
                    RetryEvent(
                        fault_kind=type(e).__name__,
                        message=str(e),
                        attempt=attempt,
                        retries_remaining=retries_remaining,
                    )
                )

                if attempt > config.retries:
                    raise
                attempt += 1

    def validate_response(self, request: ModbusMessage, response: ModbusResponse) -> None:
        """Checks that a data response answers the request that was sent.

        Args:
            request (ModbusMessage): The request that was sent
            response (ModbusResponse): The data response received

        Raises:
            FunctionCodeMismatchError: If the function codes differ.
            SlaveAddressMismatchError: If the slave addresses differ.
        """
        if request.function_code != response.function_code:
            raise FunctionCodeMismatchError(
                f"Received response with unexpected Function Code. "
                f"Expected {request.function_code}, received {response.function_code}.",
                expected=request.function_code,
                received=response.function_code,
            )

        if request.slave_address != response.slave_address:
            raise SlaveAddressMismatchError(
                f"Response slave address does not match request. "
                f"Expected {request.slave_address}, received {response.slave_address}.",
                expected=request.slave_address,
                received=response.slave_address,
            )

    def _write(self, request: ModbusMessage) -> None:
        """Encodes and writes a request. The caller holds `_sync_lock`."""
        frame = self._codec.build_message_frame(request)
        self._channel.write(frame)

    def _read_response(
        self,
        response_type: Type[ResponseT],
        config: TransportConfig,
        deadline_ms: Optional[int],
        cancel_event: Optional[threading.Event],
    ) -> DecodedResponse[ResponseT]:
        """Reads responses until one is not an ACKNOWLEDGE. The caller holds `_sync_lock`."""
        while True:
            frame = self._channel.read_response()
            decoded = self._codec.create_response(frame, response_type)

            if (
                decoded.kind is not ResponseKind.EXCEPTION
                or decoded.exception.exception_code != SlaveExceptionCode.ACKNOWLEDGE
            ):
                return decoded

            # The slave is still processing the request: read again, do not resubmit.
            self._logger.info(
                f"Received ACKNOWLEDGE slave exception response, waiting "
                f"{config.wait_to_retry_milliseconds} milliseconds and retrying to read response."
            )
            self._wait_to_retry(decoded.exception, config, False, deadline_ms, cancel_event)

    def _wait_to_retry(
        self,
        exception_response: SlaveExceptionResponse,
        config: TransportConfig,
        resubmit: bool,
        deadline_ms: Optional[int],
        cancel_event: Optional[threading.Event],
    ) -> None:
        """Waits `wait_to_retry_milliseconds` unless the caller's deadline or cancel event says otherwise.

        The wait is shortened to whatever is left before the deadline. The read
        that follows it is not, so an exchange can still overrun the deadline by
        up to one channel read timeout.
        """
        wait_ms = config.wait_to_retry_milliseconds

        if deadline_ms is not None:
            remaining_ms = deadline_ms - get_milliseconds()
            if remaining_ms <= 0:
                self._logger.warning(f"Deadline expired while slave {exception_response.slave_address} was not ready.")
                raise ExchangeDeadlineExceededError(
                    f"Deadline expired waiting on slave {exception_response.slave_address}. "
                    f"Last response: {exception_response}",
                    exception_response,
                )
            wait_ms = min(wait_ms, remaining_ms)

        self._emit(
            WaitEvent(
                slave_address=exception_response.slave_address,
                exception_code=exception_response.exception_code,
                wait_ms=wait_ms,
                resubmit=resubmit,
            )
        )

        wait_s = milliseconds_to_seconds(wait_ms)
        if cancel_event is None:
            time.sleep(wait_s)
        elif cancel_event.wait(wait_s):
            self._logger.warning(f"Exchange with slave {exception_response.slave_address} cancelled.")
            raise ExchangeCancelledError(
                f"Exchange cancelled waiting on slave {exception_response.slave_address}. "
                f"Last response: {exception_response}",
                exception_response,
            )

    def _emit(self, event: DiagnosticEvent) -> None:
        """Forwards an event to every listener. A failing listener never breaks the exchange."""
        with self._config_lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                self._logger.exception(f"Error in diagnostics listener while handling {event}: {e}")
