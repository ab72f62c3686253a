"""Equipment loan counters and notification feed."""

from .version import __version__

__all__ = ["__version__"]
