"""Move a live mount point onto a secondary block device."""

from .__version__ import __version__


__all__ = ["__version__"]
