"""Tests for storage/fstab.py - fstab backup and rewrite.

This test suite covers:
- Timestamped backups next to the original file
- Removal of every active entry for a migrated mount point
- Preservation of comments and unrelated entries
- Idempotent end state when the same update is applied twice
- Error handling for unreadable files
"""

import os

import pytest

from mount_migrator.domain.models import FstabEntry
from mount_migrator.storage import fstab
from mount_migrator.storage.exceptions import ConfigUpdateError


def _var_entry(uuid="new-uuid"):
    return FstabEntry.for_uuid(uuid, "/var", "ext4", "defaults,noatime,nodiratime", 0, 1)


class TestBackupFstab:
    def test_backup_name_and_content(self, fstab_file):
        backup = fstab.backup_fstab(fstab_file, "20240101120000")
        assert backup.name == "fstab.backup.20240101120000"
        assert backup.parent == fstab_file.parent
        assert backup.read_text() == fstab_file.read_text()

    def test_backup_failure_raises(self, tmp_path):
        with pytest.raises(ConfigUpdateError):
            fstab.backup_fstab(tmp_path / "missing", "1")


class TestRewriteEntries:
    def test_trailing_slash_matches(self):
        """Test /var/ in the file counts as the same mount point as /var."""
        entries = [FstabEntry.parse("/dev/sdc1 /var/ ext4 defaults 0 2\n")]
        result = fstab.rewrite_entries(entries, [_var_entry()])
        assert [e.mount_point for e in result] == ["/var"]

    def test_commented_entry_is_kept(self):
        entries = [FstabEntry.parse("#/dev/sdc1 /var ext4 defaults 0 2\n")]
        result = fstab.rewrite_entries(entries, [_var_entry()])
        assert result[0].raw == "#/dev/sdc1 /var ext4 defaults 0 2\n"
        assert len(result) == 2

    def test_nested_mount_point_is_kept(self):
        entries = [FstabEntry.parse("tmpfs /var/tmp tmpfs defaults 0 0\n")]
        result = fstab.rewrite_entries(entries, [_var_entry()])
        assert [e.mount_point for e in result] == ["/var/tmp", "/var"]


class TestUpdateFstab:
    """Tests for update_fstab()."""

    def test_replaces_existing_entry(self, fstab_file):
        """Test the old /home line is removed and the UUID line appended."""
        replacement = FstabEntry.for_uuid("1111", "/home", "ext4", "defaults", 0, 2)

        backup = fstab.update_fstab(fstab_file, [replacement], "20240101120000")

        content = fstab_file.read_text()
        assert "/dev/sdc1 /home" not in content
        assert content.endswith("UUID=1111 /home ext4 defaults 0 2\n")
        assert "# /etc/fstab: static file system information.\n" in content
        assert "UUID=aaaa-root / ext4 errors=remount-ro 0 1\n" in content
        assert "UUID=bbbb-boot /boot/efi vfat umask=0077 0 1\n" in content
        assert "/dev/sdc1 /home" in backup.read_text()

    def test_removes_every_duplicate(self, fstab_file):
        fstab_file.write_text(
            "/dev/sdc1 /var ext4 defaults 0 2\n"
            "UUID=old /var ext4 defaults 0 2\n"
            "proc /proc proc defaults 0 0\n"
        )
        fstab.update_fstab(fstab_file, [_var_entry()], "1")

        assert len(fstab.active_entries(fstab_file, "/var")) == 1
        assert len(fstab.active_entries(fstab_file, "/proc")) == 1

    def test_adds_entry_when_none_existed(self, fstab_file):
        fstab.update_fstab(fstab_file, [_var_entry()], "1")
        (entry,) = fstab.active_entries(fstab_file, "/var")
        assert entry.device == "UUID=new-uuid"

    def test_multiple_mount_points(self, fstab_file):
        entries = [
            FstabEntry.for_uuid("r", "/root", "ext4", "defaults", 0, 2),
            FstabEntry.for_uuid("v", "/var", "ext4", "defaults", 0, 2),
        ]
        fstab.update_fstab(fstab_file, entries, "1")
        assert fstab_file.read_text().endswith(
            "UUID=r /root ext4 defaults 0 2\nUUID=v /var ext4 defaults 0 2\n"
        )

    def test_second_run_converges(self, fstab_file):
        """Test applying a new UUID again still leaves exactly one entry."""
        fstab.update_fstab(fstab_file, [_var_entry("first")], "1")
        fstab.update_fstab(fstab_file, [_var_entry("second")], "2")

        (entry,) = fstab.active_entries(fstab_file, "/var")
        assert entry.device == "UUID=second"
        assert (fstab_file.parent / "fstab.backup.1").exists()
        assert (fstab_file.parent / "fstab.backup.2").exists()

    def test_handles_missing_trailing_newline(self, fstab_file):
        fstab_file.write_text("UUID=aaaa / ext4 defaults 0 1")
        fstab.update_fstab(fstab_file, [_var_entry()], "1")
        assert fstab_file.read_text().splitlines() == [
            "UUID=aaaa / ext4 defaults 0 1",
            "UUID=new-uuid /var ext4 defaults,noatime,nodiratime 0 1",
        ]

    def test_preserves_mode(self, fstab_file):
        os.chmod(fstab_file, 0o600)
        fstab.update_fstab(fstab_file, [_var_entry()], "1")
        assert fstab_file.stat().st_mode & 0o777 == 0o600
        assert not (fstab_file.parent / ".fstab.tmp").exists()

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigUpdateError, match="Failed to read"):
            fstab.update_fstab(tmp_path / "fstab", [_var_entry()], "1")
