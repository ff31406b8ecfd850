"""
Core library for the Synapse workspace session layer.

Modules:
- types: ErrorCategory and shared protocols
- errors: WorkspaceError hierarchy, classification and failure payloads
- resilience: retry executor shared by SQL and REST calls
- auth: credential strategies and token caches
- logging: structured logging setup, formatters and context
- utils: JSON and text helpers
"""

from .types import ErrorCategory, ErrorClassifier, TokenProvider

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
    "ErrorClassifier",
    "TokenProvider",
]
