"""Tests for firmware boot entry registration."""

import pytest

from grub_sign.config import EfiConfig
from grub_sign.efiboot import BootEntry
from grub_sign.errors import ExternalToolFailure
from grub_sign.registrar import BootRegistrar, matching_entries

from conftest import FakeFirmware

OTHER_ENTRIES = [
    BootEntry(number="0000", label="Windows Boot Manager"),
    BootEntry(number="0003", label="UEFI Shell"),
]


def stale_entries(count: int) -> list[BootEntry]:
    labels = ["grub-sign", "GRUB-SIGN (old)", "Grub-Sign 2"]
    return [BootEntry(number=f"{0x10 + i:04X}", label=labels[i]) for i in range(count)]


class TestMatchingEntries:
    """Tests for label matching."""

    def test_case_insensitive_substring(self):
        """Test labels containing ours in any case match."""
        entries = stale_entries(3) + OTHER_ENTRIES
        assert matching_entries(entries, "grub-sign") == stale_entries(3)

    def test_no_match(self):
        """Test unrelated entries never match."""
        assert matching_entries(OTHER_ENTRIES, "grub-sign") == []


class TestBootRegistrar:
    """Tests for BootRegistrar."""

    @pytest.mark.parametrize("stale", [0, 1, 3])
    def test_exactly_one_entry(self, stale):
        """Test one entry with our label remains regardless of stale ones."""
        firmware = FakeFirmware(OTHER_ENTRIES + stale_entries(stale))
        BootRegistrar(firmware, EfiConfig()).register()

        ours = matching_entries(firmware.entries, "grub-sign")
        assert len(ours) == 1
        assert [e for e in firmware.entries if e not in ours] == OTHER_ENTRIES

    def test_delete_before_create(self):
        """Test stale entries are gone before the new one is created."""
        firmware = FakeFirmware(stale_entries(2))
        BootRegistrar(firmware, EfiConfig()).register()
        kinds = [kind for kind, _ in firmware.events]
        assert kinds == ["delete", "delete", "create"]

    def test_loader_and_partition(self):
        """Test the new entry points at the signed image on the ESP."""
        firmware = FakeFirmware()
        BootRegistrar(firmware, EfiConfig()).register()
        location, loader = firmware.created_at
        assert loader == "\\EFI\\grub-sign\\grubx64-signed.efi"
        assert location.disk == "/dev/nvme0n1"

    def test_purge_best_effort_on_list_failure(self):
        """Test a failing listing does not stop registration."""
        firmware = FakeFirmware()
        firmware.fail_list = True
        BootRegistrar(firmware, EfiConfig()).register()
        assert firmware.events[-1][0] == "create"

    def test_purge_best_effort_on_delete_failure(self):
        """Test an entry that cannot be deleted is skipped."""

        class StubbornFirmware(FakeFirmware):
            def delete_entry(self, number):
                raise ExternalToolFailure(["efibootmgr"], 5, "Could not delete variable")

        firmware = StubbornFirmware(stale_entries(1))
        assert BootRegistrar(firmware, EfiConfig()).purge() == 0

    def test_create_failure_propagates(self):
        """Test failing to create the entry is fatal."""

        class ReadOnlyFirmware(FakeFirmware):
            def create_entry(self, location, label, loader):
                raise ExternalToolFailure(["efibootmgr", "--create"], 5, "No space left")

        with pytest.raises(ExternalToolFailure):
            BootRegistrar(ReadOnlyFirmware(), EfiConfig()).register()
