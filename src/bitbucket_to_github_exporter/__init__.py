"""
Bitbucket to GitHub Export Tool

Exports a Bitbucket Cloud repository (git history, pull requests and review
conversations) into the archive format expected by the GitHub migration importer.
"""

from __future__ import annotations

from .bitbucket_client import BitbucketClient
from .cli import main
from .config import Credentials, ExportOptions
from .exceptions import (
    AuthenticationError,
    CloneError,
    ConfigurationError,
    ExportError,
    InvalidReferenceError,
    MaterializationError,
    NotFoundError,
    RateLimitExhaustedError,
    TransientFetchError,
)
from .exporter import BitbucketExporter, ExportResult
from .threads import ThreadReconstructor
from .utils import setup_logging

# Package version
__version__ = "0.1.0"

__all__ = [
    "AuthenticationError",
    "BitbucketClient",
    "BitbucketExporter",
    "CloneError",
    "ConfigurationError",
    "Credentials",
    "ExportError",
    "ExportOptions",
    "ExportResult",
    "InvalidReferenceError",
    "MaterializationError",
    "NotFoundError",
    "RateLimitExhaustedError",
    "ThreadReconstructor",
    "TransientFetchError",
    "main",
    "setup_logging",
]
