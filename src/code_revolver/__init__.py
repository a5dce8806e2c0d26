"""Code Revolver - quota-aware rotation between credential profiles."""

from ._version import __version__


__all__ = ["__version__"]
