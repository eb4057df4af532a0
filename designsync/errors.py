"""Exception types shared across the sync pipeline."""

from __future__ import annotations

from typing import Optional


class DesignSyncError(Exception):
    """Base class for DesignSync errors."""


class OracleError(DesignSyncError):
    """The text-generation oracle failed in a way retrying will not fix."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransientOracleError(OracleError):
    """The oracle failed with a status worth retrying (5xx, 429, 408, 409)."""


class PathEscapeError(DesignSyncError, ValueError):
    """A resolved path would land outside the workspace root."""
