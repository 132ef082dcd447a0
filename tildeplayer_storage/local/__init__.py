"""
Local storage for track collections and credentials.
"""

from .store import LocalStore

__all__ = ["LocalStore"]
