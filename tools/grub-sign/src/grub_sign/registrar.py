"""Firmware boot entry registration."""

import logging
from pathlib import Path

from .config import EfiConfig
from .efiboot import BootEntry, FirmwareBootService
from .errors import ExternalToolFailure

logger = logging.getLogger(__name__)


def matching_entries(entries: list[BootEntry], label: str) -> list[BootEntry]:
    """Entries whose label contains label, ignoring case."""
    needle = label.lower()
    return [entry for entry in entries if needle in entry.label.lower()]


class BootRegistrar:
    """Keeps exactly one firmware entry for the signed image."""

    def __init__(self, firmware: FirmwareBootService, config: EfiConfig) -> None:
        self.firmware = firmware
        self.config = config

    def purge(self) -> int:
        """Delete every entry carrying our label.

        Best effort: failures to list or delete are logged and skipped.

        Returns:
            Number of entries deleted
        """
        try:
            entries = self.firmware.list_entries()
        except ExternalToolFailure as e:
            logger.info("cannot list boot entries: %s", e)
            return 0

        deleted = 0
        for entry in matching_entries(entries, self.config.entry_label):
            try:
                self.firmware.delete_entry(entry.number)
            except ExternalToolFailure as e:
                logger.info("cannot delete boot entry %s: %s", entry.number, e)
                continue
            logger.info("deleted stale boot entry Boot%s (%s)", entry.number, entry.label)
            deleted += 1
        return deleted

    def register(self) -> None:
        """Replace any stale entries with one pointing at the signed image.

        Stale entries are removed before the new one is created so the
        firmware never holds two entries with our label.
        """
        self.purge()
        location = self.firmware.resolve_partition(Path(self.config.esp_mount))
        self.firmware.create_entry(location, self.config.entry_label, self.config.loader_path)
        logger.info(
            "created boot entry %r on %s partition %d",
            self.config.entry_label,
            location.disk,
            location.partition,
        )
