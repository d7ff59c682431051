"""Bitwarden Keyring.

freedesktop.org Secret Service backed by a Bitwarden vault.
"""
from .version import __version__

__all__ = ("__version__",)
