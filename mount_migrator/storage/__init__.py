"""Block device, filesystem and fstab helpers used by the migration phases."""
