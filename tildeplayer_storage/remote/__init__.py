"""
Remote document store access over the GitHub REST API.
"""

from .api import GitHubApiClient, classify_response
from .credentials import CredentialValidator, ValidationVerdict
from .gist_client import GistClient

__all__ = [
    "GitHubApiClient",
    "GistClient",
    "CredentialValidator",
    "ValidationVerdict",
    "classify_response",
]
