"""
Hex dump formatting for logging raw MQTT payloads.
"""
import logging
from typing import List

logger = logging.getLogger(__name__)

BYTES_PER_LINE = 16


def hexdump_lines(data: bytes) -> List[str]:
    """Formats `data` as offset / hex / printable-ASCII lines."""
    lines = []
    for offset in range(0, len(data), BYTES_PER_LINE):
        row = data[offset:offset + BYTES_PER_LINE]
        hex_part = " ".join(f"{b:02X}" for b in row)
        text_part = "".join(chr(b) if 32 <= b < 127 else "." for b in row)
        lines.append(f"{offset:04X}: {hex_part:<{BYTES_PER_LINE * 3 - 1}}   {text_part}")
    return lines


def log_hexdump(data: bytes, level: int = logging.INFO, log: logging.Logger = logger):
    log.log(level, f"hexdump of {len(data)} bytes")
    for line in hexdump_lines(data):
        log.log(level, line)
