"""Operational settings for mount-migrator."""
