"""A threaded data integrity stress test ("storm test") for the serial Master.

This script demonstrates sharing one `ModbusSerialMaster` between several
threads. Each thread writes random values to a block of holding registers on
its own slave, reads them back, and checks they match. The exchange engine
serializes the threads' exchanges on the bus.

Test Behavior:
- One worker thread per slave address in `SLAVE_ADDRESSES`.
- Each worker loops `ITERATIONS` times over register block sizes in
  `REGISTER_COUNT_RANGE`, writing and reading back random values.
- Retries and busy/acknowledge waits are counted through a diagnostics listener.
- Any failure is logged and makes the script exit with a non-zero status.

Dependencies:
- One Modbus RTU slave per address in `SLAVE_ADDRESSES`, each exposing
  writable holding registers starting at `FIRST_REGISTER`.

Usage:
1. Ensure compatible slaves are connected.
2. Configure the serial port in `create_master` below.
3. Run this script from the command line.
"""

import logging
import random
import sys
import threading
from collections import Counter
from pathlib import Path

import serial
from mephew_python_commons.custom_logger import get_custom_logger

# Add the project's src directory to the Python path.
sys.path.append(str(Path(__file__).resolve().parents[2] / "src"))

from modbus_master import ModbusError, ModbusSerialMaster, RetryEvent, WaitEvent

logger = get_custom_logger(__name__, level=logging.INFO)

# --- Test Configuration ---
SLAVE_ADDRESSES = [1, 2]
FIRST_REGISTER = 0
REGISTER_COUNT_RANGE = (1, 124)
ITERATIONS = 1

diagnostics = Counter()
diagnostics_lock = threading.Lock()


def count_diagnostic(event) -> None:
    """Counts retries and waits reported by the exchange engine."""
    with diagnostics_lock:
        if isinstance(event, RetryEvent):
            diagnostics[f"retry:{event.fault_kind}"] += 1
        elif isinstance(event, WaitEvent):
            diagnostics[f"wait:{event.exception_code}"] += 1


def create_master() -> ModbusSerialMaster:
    """Opens the serial port and builds the Master."""
    serial_port = serial.Serial(
        "COM9",  # <-- IMPORTANT: Change this to your serial port
        baudrate=19200,
        parity=serial.PARITY_EVEN,
        stopbits=serial.STOPBITS_ONE,
        bytesize=serial.EIGHTBITS,
        timeout=1,
        write_timeout=1,
    )
    return ModbusSerialMaster(interface=serial_port, retries=3, wait_to_retry_milliseconds=250, listeners=[count_diagnostic])


def storm_slave(master: ModbusSerialMaster, slave_address: int, failures: list) -> None:
    """Writes and reads back random register blocks on one slave."""
    for i in range(ITERATIONS):
        for register_count in range(*REGISTER_COUNT_RANGE):
            values = [random.randint(0, 0xFFFF) for _ in range(register_count)]
            try:
                master.write_multiple_registers(slave_address, FIRST_REGISTER, values)
                read_back = master.read_holding_registers(slave_address, FIRST_REGISTER, register_count)
            except ModbusError as e:
                logger.error(f"Slave {slave_address}: exchange failed with {type(e).__name__}: {e}")
                failures.append(e)
                return

            if read_back != values:
                logger.error(f"Slave {slave_address}: read back {read_back}, expected {values}")
                failures.append(ValueError(f"Register mismatch on slave {slave_address}"))
                return

            logger.debug(f"Slave {slave_address}: {register_count} registers OK")

        logger.info(f"Slave {slave_address}: iteration {i + 1}/{ITERATIONS} complete")


if __name__ == "__main__":
    failures = []

    with create_master() as master:
        workers = [
            threading.Thread(target=storm_slave, args=(master, address, failures), name=f"slave-{address}")
            for address in SLAVE_ADDRESSES
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

    logger.info(f"Diagnostics: {dict(diagnostics)}")

    if failures:
        logger.error("Storm test failed. Exiting.")
        sys.exit(1)

    logger.info("--- Storm Test Complete ---")
