"""Parser for the runtime's single-container tabular stats line.

Expected line (whitespace separated, as produced by `docker stats --no-stream`
with the format in ``DOCKER_STATS_FORMAT``):

    <id> <cpu%> <memUsed> / <memLimit> <mem%> <netIn> / <netOut> <blkRead> / <blkWrite>

Example:
    6f26fe0080ca 0.00% 2.098MiB / 3.647GiB 0.06% 2.02kB / 0B 14.3MB / 6.09MB
"""

from __future__ import annotations

import logging

from container_telemetry.core.schemas import ContainerStats
from container_telemetry.monitoring.units import (
    parse_bytes,
    parse_percent,
    try_parse_bytes,
)

logger = logging.getLogger(__name__)

# Tokens up to and including the network-out value. Block I/O is optional.
MIN_STATS_TOKENS = 9
FULL_STATS_TOKENS = 12

_SEPARATOR = "/"

# Token positions
_ID, _CPU, _MEM_USED, _MEM_SEP, _MEM_LIMIT, _MEM_PCT = 0, 1, 2, 3, 4, 5
_NET_IN, _NET_SEP, _NET_OUT = 6, 7, 8
_BLK_READ, _BLK_SEP, _BLK_WRITE = 9, 10, 11


def parse_stats_line(line: str) -> ContainerStats | None:
    """Parse one stats line into a ContainerStats sample.

    The whole line is rejected (None) when it has fewer than the expected
    tokens or the "used / limit" style pairs are not separated by a bare "/".
    No partially zeroed sample is ever produced from a short line.

    Args:
        line: A single line of stats output

    Returns:
        ContainerStats or None if the line is malformed
    """
    parts = line.split()
    if len(parts) < MIN_STATS_TOKENS:
        logger.debug(f"Rejecting stats line with {len(parts)} tokens: {line!r}")
        return None

    if parts[_MEM_SEP] != _SEPARATOR or parts[_NET_SEP] != _SEPARATOR:
        logger.debug(f"Rejecting stats line with unexpected separators: {line!r}")
        return None

    disk_read: float | None = None
    disk_write: float | None = None
    if len(parts) >= FULL_STATS_TOKENS and parts[_BLK_SEP] == _SEPARATOR:
        disk_read = parse_bytes(parts[_BLK_READ])
        disk_write = parse_bytes(parts[_BLK_WRITE])

    return ContainerStats(
        runtime_id=parts[_ID],
        cpu_percent=parse_percent(parts[_CPU]),
        mem_percent=parse_percent(parts[_MEM_PCT]),
        # An unparseable limit stays None; 0 would read as "no memory cap".
        mem_limit_bytes=try_parse_bytes(parts[_MEM_LIMIT]),
        net_in_bytes=parse_bytes(parts[_NET_IN]),
        net_out_bytes=parse_bytes(parts[_NET_OUT]),
        disk_read_bytes=disk_read,
        disk_write_bytes=disk_write,
    )


def parse_stats_output(stdout: str) -> ContainerStats | None:
    """Parse the full stdout of a stats query for a single container.

    Empty output (the container stopped between listing and sampling) yields
    None; it is not an error. Only the first non-empty line is considered.
    """
    for line in stdout.splitlines():
        if line.strip():
            return parse_stats_line(line)
    return None
