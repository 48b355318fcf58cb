"""Firmware boot entry access via efibootmgr."""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from .errors import ExternalToolFailure
from .tools import run

logger = logging.getLogger(__name__)

ENTRY_REGEX = re.compile(r"^Boot([0-9A-Fa-f]{4})(\*?)\s+(.*?)(?:\t.*)?$")


@dataclass(frozen=True)
class BootEntry:
    """A firmware boot entry."""

    number: str
    label: str
    active: bool = True


@dataclass(frozen=True)
class PartitionLocation:
    """Disk device and partition number backing a mount point."""

    disk: str
    partition: int


class FirmwareBootService(Protocol):
    """Protocol for firmware boot entry management."""

    def list_entries(self) -> list[BootEntry]:
        """List all boot entries."""
        ...

    def delete_entry(self, number: str) -> None:
        """Delete the entry with the given boot number."""
        ...

    def create_entry(self, location: PartitionLocation, label: str, loader: str) -> None:
        """Create an entry pointing at loader on the given partition."""
        ...

    def resolve_partition(self, mount_point: Path) -> PartitionLocation:
        """Resolve the disk and partition number backing mount_point."""
        ...


def parse_entries(output: str) -> list[BootEntry]:
    """Parse the entry lines of ``efibootmgr`` output."""
    entries = []
    for line in output.splitlines():
        if line.startswith(("BootCurrent:", "BootNext:", "BootOrder:", "Timeout:")):
            continue
        match = ENTRY_REGEX.match(line)
        if match:
            entries.append(
                BootEntry(
                    number=match.group(1).upper(),
                    label=match.group(3).strip(),
                    active=match.group(2) == "*",
                )
            )
    return entries


def split_partition_device(device: str, sys_block: Path = Path("/sys/class/block")) -> PartitionLocation:
    """Split a partition device node into its disk and partition number.

    The kernel's sysfs view is authoritative; it handles nvme/mmc style
    ``p<N>`` suffixes as well as plain ``sda1`` names.
    """
    name = Path(device).name
    partition_file = sys_block / name / "partition"
    if not partition_file.exists():
        raise ExternalToolFailure(["sysfs", str(partition_file)], stderr=f"{device} is not a partition")

    partition = int(partition_file.read_text().strip())
    # /sys/class/block/<part> links into /sys/devices/.../<disk>/<part>
    disk_name = (sys_block / name).resolve().parent.name
    return PartitionLocation(disk=f"/dev/{disk_name}", partition=partition)


class EfibootmgrService:
    """Boot entry management backed by ``efibootmgr``."""

    def __init__(self, timeout: Optional[float] = None, sys_block: Path = Path("/sys/class/block")) -> None:
        """Initialize service.

        Args:
            timeout: Seconds allowed for each invocation
            sys_block: Location of the sysfs block class directory
        """
        self.timeout = timeout
        self.sys_block = sys_block

    def list_entries(self) -> list[BootEntry]:
        """List all boot entries."""
        return parse_entries(run("efibootmgr", timeout=self.timeout))

    def delete_entry(self, number: str) -> None:
        """Delete a boot entry."""
        run("efibootmgr", "--bootnum", number, "--delete-bootnum", timeout=self.timeout)

    def create_entry(self, location: PartitionLocation, label: str, loader: str) -> None:
        """Create a boot entry and put it first in the boot order."""
        run(
            "efibootmgr",
            "--create",
            "--disk",
            location.disk,
            "--part",
            str(location.partition),
            "--label",
            label,
            "--loader",
            loader,
            timeout=self.timeout,
        )

    def resolve_partition(self, mount_point: Path) -> PartitionLocation:
        """Resolve the partition mounted at mount_point."""
        source = run(
            "findmnt",
            "--noheadings",
            "--output",
            "SOURCE",
            "--mountpoint",
            mount_point,
            timeout=self.timeout,
        ).strip()
        if not source:
            raise ExternalToolFailure(["findmnt", str(mount_point)], stderr="nothing mounted")
        return split_partition_device(source, self.sys_block)
