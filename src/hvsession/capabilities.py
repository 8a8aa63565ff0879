"""Host capability probing.

Reads the host CPU identification leaves and the hypervisor's system
limits through the CLI:

    $ VBoxManage list hostcpuids
    Host CPUIDs:

    Leaf no.  EAX      EBX      ECX      EDX
    00000000  0000000d 756e6547 6c65746e 49656e69
    00000001  000306a9 00100800 7fbae3ff bfebfbff
    80000001  00000000 00000000 20000021 2c100800
"""

import logging
from dataclasses import dataclass, field

from hvsession.errors import HypervisorError, HypervisorStatus
from hvsession.modules.subprocess_helper import CommandAdapter, ExecConfig
from hvsession.named_locks import NamedLockTable
from hvsession.text_parsing import parse_key_value_lines, parse_leading_int

logger = logging.getLogger(__name__)

LEAF_VENDOR = "00000000"
LEAF_FEATURES = "00000001"
LEAF_EXTENDED_FEATURES = "80000001"

FEATURE_VMX = 0x20  # primary leaf ECX bit 5 (Intel VT-x)
FEATURE_SVM = 0x2  # extended leaf ECX bit 1 (AMD-V)
FEATURE_LONG_MODE = 0x20000000  # extended leaf ECX bit 29

DEFAULT_MAX_CPUS = 1
DEFAULT_MAX_MEMORY_MB = 1024
DEFAULT_MAX_DISK_MB = 2048

KEY_MAX_MEMORY = "Maximum guest RAM size"
KEY_MAX_CPUS = "Maximum guest CPU count"
KEY_DISK_LIMIT = "Virtual disk limit (info)"


@dataclass
class CpuInfo:
    """Host CPU identification."""

    vendor: str = ""
    features_a: int = 0  # leaf 1 ECX
    features_b: int = 0  # leaf 1 EDX
    features_c: int = 0  # leaf 0x80000001 ECX
    features_d: int = 0  # leaf 0x80000001 EDX
    stepping: int = 0
    model: int = 0
    family: int = 0
    type: int = 0
    ex_model: int = 0
    ex_family: int = 0
    has_vt: bool = False
    has_64bit: bool = False


@dataclass
class ResourceLimits:
    """Resource ceilings for a single guest."""

    max_cpus: int = DEFAULT_MAX_CPUS
    max_memory_mb: int = DEFAULT_MAX_MEMORY_MB
    max_disk_mb: int = DEFAULT_MAX_DISK_MB


@dataclass
class HypervisorCapabilities:
    """What the host and hypervisor can offer to guests."""

    cpu: CpuInfo = field(default_factory=CpuInfo)
    limits: ResourceLimits = field(default_factory=ResourceLimits)


def decode_register(value: int) -> str:
    """Decode a 32-bit register into four characters, least significant byte first."""
    return "".join(chr((value >> shift) & 0xFF) for shift in (0, 8, 16, 24))


def parse_cpuid_rows(lines: list[str]) -> CpuInfo:
    """Derive CpuInfo from `list hostcpuids` rows.

    Rows are "<leaf> <eax> <ebx> <ecx> <edx>" in hex. Headers, short rows and
    unknown leaves are ignored.
    """
    cpu = CpuInfo()
    for line in lines:
        parts = line.split()
        if len(parts) < 5:
            continue
        leaf = parts[0]
        if leaf not in (LEAF_VENDOR, LEAF_FEATURES, LEAF_EXTENDED_FEATURES):
            continue
        try:
            eax, ebx, ecx, edx = (int(p, 16) for p in parts[1:5])
        except ValueError:
            logger.debug(f"Skipping malformed CPUID row: {line}")
            continue

        if leaf == LEAF_VENDOR:
            cpu.vendor = decode_register(ebx) + decode_register(edx) + decode_register(ecx)
        elif leaf == LEAF_FEATURES:
            cpu.features_a = ecx
            cpu.features_b = edx
            cpu.stepping = eax & 0xF
            cpu.model = (eax & 0xF0) >> 4
            cpu.family = (eax & 0xF00) >> 8
            cpu.type = (eax & 0x3000) >> 12
            cpu.ex_model = (eax & 0xF0000) >> 16
            cpu.ex_family = (eax & 0xFF00000) >> 20
        else:
            cpu.features_c = ecx
            cpu.features_d = edx

    cpu.has_vt = bool(cpu.features_a & FEATURE_VMX) or bool(cpu.features_c & FEATURE_SVM)
    cpu.has_64bit = bool(cpu.features_c & FEATURE_LONG_MODE)
    return cpu


def parse_resource_limits(lines: list[str]) -> ResourceLimits:
    """Derive ResourceLimits from `list systemproperties` output.

    Absent keys keep their defaults. The disk limit is reported in a unit
    1024 times smaller than megabytes and is divided down.
    """
    data = parse_key_value_lines(lines)
    limits = ResourceLimits()
    if KEY_MAX_MEMORY in data:
        limits.max_memory_mb = parse_leading_int(data[KEY_MAX_MEMORY], limits.max_memory_mb)
    if KEY_DISK_LIMIT in data:
        disk = parse_leading_int(data[KEY_DISK_LIMIT])
        if disk is not None:
            limits.max_disk_mb = disk // 1024
    if KEY_MAX_CPUS in data:
        limits.max_cpus = parse_leading_int(data[KEY_MAX_CPUS], limits.max_cpus)
    return limits


class CapabilityProbe:
    """Query host CPU features and guest resource ceilings."""

    def __init__(
        self,
        adapter: CommandAdapter,
        locks: NamedLockTable,
        exec_config: ExecConfig | None = None,
    ):
        self.adapter = adapter
        self.locks = locks
        self.exec_config = exec_config or adapter.default_config

    def _query(self, command: str) -> list[str]:
        with self.locks.hold(NamedLockTable.GENERIC):
            result = self.adapter.execute(command, self.exec_config)
        if result.exit_code != 0:
            raise HypervisorError(
                f"'{command}' failed with exit code {result.exit_code}",
                HypervisorStatus.QUERY_ERROR,
            )
        if not result.stdout_lines:
            raise HypervisorError(f"'{command}' returned no output", HypervisorStatus.EXTERNAL_ERROR)
        return result.stdout_lines

    def probe(self) -> HypervisorCapabilities:
        """Collect host capabilities.

        Returns:
            HypervisorCapabilities

        Raises:
            HypervisorError: QUERY_ERROR if a query fails, EXTERNAL_ERROR if
                it returns nothing
        """
        cpu = parse_cpuid_rows(self._query("list hostcpuids"))
        limits = parse_resource_limits(self._query("list systemproperties"))
        logger.debug(
            f"Host CPU {cpu.vendor} family={cpu.family} model={cpu.model} "
            f"vt={cpu.has_vt} 64bit={cpu.has_64bit}"
        )
        return HypervisorCapabilities(cpu=cpu, limits=limits)


__all__ = [
    "CapabilityProbe",
    "CpuInfo",
    "HypervisorCapabilities",
    "ResourceLimits",
    "decode_register",
    "parse_cpuid_rows",
    "parse_resource_limits",
]
