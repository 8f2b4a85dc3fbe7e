"""Init-system and container-runtime control used to quiesce a mount point."""
