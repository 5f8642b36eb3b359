# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Error Taxonomy — failures the bootstrap kernel distinguishes.

  TransientStoreError  network / timeout; retried, then surfaced as "try again"
  SchemaError          a required collection is missing; never retried
  ConflictError        uniqueness violation; a concurrent write already won
  TenantPermissionError a non-owner asked for a tenant-wide migration
  PartialMigrationError re-keys left unfinished; resumed on the next pass
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BootstrapError(Exception):
    """Base class for every error raised by the bootstrap kernel."""

    code = "BOOTSTRAP_ERROR"
    retryable = False

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class TransientStoreError(BootstrapError):
    code = "TRANSIENT_ERROR"
    retryable = True


class SchemaError(BootstrapError):
    code = "SCHEMA_ERROR"


class ConflictError(BootstrapError):
    code = "CONFLICT"


class TenantPermissionError(BootstrapError):
    code = "PERMISSION_ERROR"


class PartialMigrationError(BootstrapError):
    """Some collections were not re-keyed; the progress marker stays open."""

    code = "PARTIAL_MIGRATION"
    retryable = True

    def __init__(self, message: str, failed_collections=None, cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.failed_collections = list(failed_collections or [])
