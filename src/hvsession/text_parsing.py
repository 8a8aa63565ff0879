"""Parsers for the hypervisor CLI's ad hoc text formats.

Formats handled:
    Key: Value                              (system properties, showvminfo)
    Name: K, value: V, timestamp: T         (guestproperty enumerate)
    "name" {uuid}                           (list vms)
    Process ID: NNNN                        (VBox.log)

All parsers are tolerant: malformed lines are skipped, never fatal.
"""

import logging
import re

logger = logging.getLogger(__name__)

PROPERTY_NAME_ANCHOR = "Name: "
PROPERTY_VALUE_ANCHOR = ", value:"
PROPERTY_TIMESTAMP_ANCHOR = ", timestamp:"
INACCESSIBLE_MARKER = "<inaccessible>"
PID_ANCHOR = "Process ID:"

_LEADING_INT = re.compile(r"^\s*(-?\d+)")


def parse_key_value_lines(lines: list[str], separator: str = ":") -> dict[str, str]:
    """Parse "Key: Value" lines into a dictionary.

    The key is everything before the first separator, the value everything
    after it; both are stripped of spaces and tabs. When a key repeats, the
    first occurrence wins. Lines without a separator are skipped.

    Args:
        lines: Output lines
        separator: Key/value separator (default ":")

    Returns:
        Dictionary of parsed values

    Example:
        >>> parse_key_value_lines(["Maximum guest CPU count:     32"])
        {'Maximum guest CPU count': '32'}
    """
    data: dict[str, str] = {}
    for line in lines:
        key, found, value = line.partition(separator)
        if not found:
            continue
        key = key.strip(" \t")
        if not key or key in data:
            continue
        data[key] = value.strip(" \t")
    return data


def parse_key_value_blocks(lines: list[str], separator: str = ":") -> list[dict[str, str]]:
    """Parse blank-line separated blocks of "Key: Value" lines.

    Used for listings such as `list hdds`, where each medium is one block.
    """
    blocks: list[dict[str, str]] = []
    current: list[str] = []
    for line in [*lines, ""]:
        if line.strip():
            current.append(line)
            continue
        if current:
            block = parse_key_value_lines(current, separator)
            if block:
                blocks.append(block)
            current = []
    return blocks


def parse_guest_property_line(line: str) -> tuple[str, str] | None:
    """Parse one `guestproperty enumerate` line.

    A line is valid only if it contains, in order, the anchors "Name: ",
    ", value:" and ", timestamp:". The key lies between the first two
    anchors, the value between the last two.

    Returns:
        (key, value) tuple, or None if any anchor is missing

    Example:
        >>> parse_guest_property_line("Name: foo, value: bar, timestamp: 123")
        ('foo', 'bar')
    """
    k_begin = line.find(PROPERTY_NAME_ANCHOR)
    if k_begin < 0:
        return None
    k_end = line.find(PROPERTY_VALUE_ANCHOR, k_begin)
    if k_end < 0:
        return None
    v_end = line.find(PROPERTY_TIMESTAMP_ANCHOR, k_end)
    if v_end < 0:
        return None

    key = line[k_begin + len(PROPERTY_NAME_ANCHOR) : k_end]
    value = line[k_end + len(PROPERTY_VALUE_ANCHOR) : v_end]
    # The anchor is followed by a single separating space
    if value.startswith(" "):
        value = value[1:]
    return key, value


def parse_guest_properties(lines: list[str]) -> dict[str, str]:
    """Parse all valid guest property lines; invalid lines are dropped."""
    properties: dict[str, str] = {}
    for line in lines:
        parsed = parse_guest_property_line(line)
        if parsed is None:
            continue
        key, value = parsed
        properties[key] = value
    return properties


def parse_vm_list(lines: list[str]) -> list[tuple[str, str]]:
    """Parse `list vms` output into (name, uuid) pairs.

    Lines look like `"my machine" {0b7a...}`. Quote and brace characters
    surrounding the name and identity are trimmed. Lines without an identity
    are skipped.
    """
    machines: list[tuple[str, str]] = []
    for line in lines:
        name, found, uuid = line.rpartition("{")
        if not found:
            continue
        name = name.strip().strip('"')
        uuid = uuid.strip().rstrip("}").strip()
        if not uuid:
            continue
        machines.append((name, uuid))
    return machines


def build_live_vm_map(lines: list[str]) -> dict[str, str]:
    """Build an external id → name map from `list vms` output.

    Inaccessible machines are discarded. When the same identity appears
    more than once, the later entry wins.
    """
    live: dict[str, str] = {}
    for name, uuid in parse_vm_list(lines):
        if INACCESSIBLE_MARKER in name:
            logger.warning(f"Found inaccessible VM {uuid}")
            continue
        live.pop(uuid, None)
        live[uuid] = name
    return live


def parse_leading_int(value: str, default: int | None = None) -> int | None:
    """Parse the integer at the start of value ("2048 MB" → 2048)."""
    match = _LEADING_INT.match(value)
    if not match:
        return default
    return int(match.group(1))


def parse_pid_line(line: str) -> int | None:
    """Extract the process id from a log line containing "Process ID: NNNN".

    The value ends at the first carriage return or newline.
    """
    start = line.find(PID_ANCHOR)
    if start < 0:
        return None
    value = line[start + len(PID_ANCHOR) :]
    for terminator in ("\r", "\n"):
        end = value.find(terminator)
        if end >= 0:
            value = value[:end]
    return parse_leading_int(value)


__all__ = [
    "build_live_vm_map",
    "parse_guest_properties",
    "parse_guest_property_line",
    "parse_key_value_blocks",
    "parse_key_value_lines",
    "parse_leading_int",
    "parse_pid_line",
    "parse_vm_list",
]
