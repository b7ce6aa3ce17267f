"""Provides the abstract base class for the byte channels a master talks over."""

from abc import ABC, abstractmethod


class Channel(ABC):
    """An opaque, half-duplex byte channel carrying request and response frames.

    Concrete channels (serial line, socket, pipe) subclass this. Neither method
    is reentrant: `ModbusTransport` serializes all access to a channel, so
    implementations do not need their own locking.
    """

    def __enter__(self) -> "Channel":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def open(self) -> None:
        """Opens the channel. Channels that are always open need not override this."""
        pass

    def close(self) -> None:
        """Closes the channel and releases its resources."""
        pass

    def is_open(self) -> bool:
        """Returns True if the channel is open, False otherwise."""
        return True

    @abstractmethod
    def write(self, frame: bytes) -> None:
        """Writes a complete request frame.

        Args:
            frame (bytes): The frame to write.

        Raises:
            TransportIOError: If the underlying device fails.
            ResponseTimeoutError: If the write does not complete in time.
        """
        pass

    @abstractmethod
    def read_response(self) -> bytes:
        """Blocks until a complete response frame has been read.

        Returns:
            bytes: The raw response frame.

        Raises:
            ResponseTimeoutError: If no complete frame arrives within the
                channel's timeout.
            TransportIOError: If the underlying device fails.
            FrameFormatError: If the frame cannot even be delimited.
        """
        pass
