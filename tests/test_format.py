"""Tests for storage/format.py - partitioning and ext4 formatting.

This test suite covers:
- Signature wipe and GPT label creation
- Percentage-based partition creation per plan target
- mkfs.ext4 tuning flags
- Partition node waiting
- Error handling (dd, parted and mkfs failures)
"""

from unittest.mock import Mock, call, patch

import pytest

from mount_migrator.domain import build_plan
from mount_migrator.domain.models import FormatOptions
from mount_migrator.storage import format as format_module
from mount_migrator.storage.exceptions import CommandError, PartitionOrFormatError


class TestWipeSignatures:
    @patch("mount_migrator.storage.format.run_command")
    def test_zeroes_first_ten_mebibytes(self, mock_run):
        format_module.wipe_signatures("/dev/sdb")
        mock_run.assert_called_once_with(
            ["dd", "if=/dev/zero", "of=/dev/sdb", "bs=1M", "count=10"],
            log_output=False,
        )

    @patch("mount_migrator.storage.format.run_command")
    def test_failure(self, mock_run):
        mock_run.side_effect = CommandError(["dd"], 1, "Permission denied")
        with pytest.raises(PartitionOrFormatError, match="clear partition table") as excinfo:
            format_module.wipe_signatures("/dev/sdb")
        assert excinfo.value.device == "/dev/sdb"

    def test_rejects_non_device_path(self):
        with pytest.raises(ValueError):
            format_module.wipe_signatures("/tmp/disk.img")


class TestCreatePartitionTable:
    @patch("mount_migrator.storage.format.run_command")
    def test_gpt_label(self, mock_run):
        format_module.create_partition_table("/dev/sdb")
        mock_run.assert_called_once_with(["parted", "-s", "/dev/sdb", "mklabel", "gpt"])

    @patch("mount_migrator.storage.format.run_command")
    def test_failure(self, mock_run):
        mock_run.side_effect = CommandError(["parted"], 1, "Error: busy")
        with pytest.raises(PartitionOrFormatError, match="GPT"):
            format_module.create_partition_table("/dev/sdb")


class TestCreatePartition:
    @patch("mount_migrator.storage.format.run_command")
    def test_percent_range(self, mock_run):
        plan = build_plan("root-var")
        format_module.create_partition("/dev/sdb", plan.targets[1])
        mock_run.assert_called_once_with(
            ["parted", "-s", "/dev/sdb", "mkpart", "primary", "ext4", "50%", "100%"]
        )


class TestFormatPartition:
    @patch("mount_migrator.storage.format.run_command")
    def test_default_options(self, mock_run):
        format_module.format_partition("/dev/sdb1")
        mock_run.assert_called_once_with(["mkfs.ext4", "-F", "/dev/sdb1"], log_output=False)

    @patch("mount_migrator.storage.format.run_command")
    def test_tuning_flags(self, mock_run):
        format_module.format_partition(
            "/dev/sdb1", "ext4", FormatOptions(inode_ratio=8192, reserved_percent=0)
        )
        mock_run.assert_called_once_with(
            ["mkfs.ext4", "-F", "-i", "8192", "-m", "0", "/dev/sdb1"], log_output=False
        )

    @patch("mount_migrator.storage.format.run_command")
    def test_failure(self, mock_run):
        mock_run.side_effect = CommandError(["mkfs.ext4"], 1, "device is busy")
        with pytest.raises(PartitionOrFormatError, match="Failed to format /dev/sdb1"):
            format_module.format_partition("/dev/sdb1")


class TestSettleDevice:
    @patch("mount_migrator.storage.format.time.sleep")
    @patch("mount_migrator.storage.format.shutil.which", return_value="/usr/bin/tool")
    @patch("mount_migrator.storage.format.run_command")
    def test_failures_are_ignored(self, mock_run, mock_which, mock_sleep):
        """Test a failing partprobe does not abort the run."""
        mock_run.side_effect = [Mock(), CommandError(["partprobe"], 1), Mock()]
        format_module.settle_device("/dev/sdb", settle_seconds=2)
        assert mock_run.call_count == 3
        mock_sleep.assert_called_once_with(2)


class TestPartitionAndFormat:
    """Tests for partition_and_format()."""

    @patch("mount_migrator.storage.format.wait_for_node", return_value=True)
    @patch("mount_migrator.storage.format.settle_device")
    @patch("mount_migrator.storage.format.run_command")
    def test_root_var_sequence(self, mock_run, mock_settle, mock_wait):
        """Test the full command sequence for a 50/50 split."""
        partitions = format_module.partition_and_format(build_plan("root-var"), settle_seconds=0)

        assert partitions == ["/dev/sdb1", "/dev/sdb2"]
        commands = [c.args[0] for c in mock_run.call_args_list]
        assert commands == [
            ["dd", "if=/dev/zero", "of=/dev/sdb", "bs=1M", "count=10"],
            ["parted", "-s", "/dev/sdb", "mklabel", "gpt"],
            ["parted", "-s", "/dev/sdb", "mkpart", "primary", "ext4", "0%", "50%"],
            ["parted", "-s", "/dev/sdb", "mkpart", "primary", "ext4", "50%", "100%"],
            ["mkfs.ext4", "-F", "/dev/sdb1"],
            ["mkfs.ext4", "-F", "/dev/sdb2"],
        ]
        mock_settle.assert_called_once_with("/dev/sdb", 0)
        mock_wait.assert_has_calls([call("/dev/sdb1"), call("/dev/sdb2")])

    @patch("mount_migrator.storage.format.wait_for_node", return_value=True)
    @patch("mount_migrator.storage.format.settle_device")
    @patch("mount_migrator.storage.format.run_command")
    def test_var_plan_uses_tuning(self, mock_run, mock_settle, mock_wait):
        format_module.partition_and_format(build_plan("var"), settle_seconds=0)
        assert mock_run.call_args_list[-1].args[0] == [
            "mkfs.ext4",
            "-F",
            "-i",
            "8192",
            "-m",
            "0",
            "/dev/sdb1",
        ]

    @patch("mount_migrator.storage.format.wait_for_node", return_value=False)
    @patch("mount_migrator.storage.format.settle_device")
    @patch("mount_migrator.storage.format.run_command")
    def test_missing_partition_node(self, mock_run, mock_settle, mock_wait):
        with pytest.raises(PartitionOrFormatError, match="did not appear"):
            format_module.partition_and_format(build_plan("home"), settle_seconds=0)

    @patch("mount_migrator.storage.format.run_command")
    def test_stops_at_first_failure(self, mock_run):
        mock_run.side_effect = [Mock(), CommandError(["parted"], 1, "busy")]
        with pytest.raises(PartitionOrFormatError):
            format_module.partition_and_format(build_plan("home"), settle_seconds=0)
        assert mock_run.call_count == 2
