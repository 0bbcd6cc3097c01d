"""
Error types for the consent store.

This module defines every exception the store raises on purpose:
- StoreError: Base exception
- EntityValidationError: A record failed output validation
- NotFoundError: A lookup that must succeed found nothing
- WriteFailureError: A backend write returned no record
- ConflictError / FieldConflictError: Identity or schema collisions
- HookRejectedError: A before-hook vetoed a write
- UnknownEntityError: A model key is not part of the assembled schema
- AdapterError / UniqueViolationError: Backend failures
- MigrationError: Planning or applying a migration failed

Invariants:
    - All errors inherit from StoreError
    - Every error carries a stable string code for programmatic handling
    - Errors are raised, never downgraded to warnings
"""

from __future__ import annotations

from typing import Any


class StoreError(Exception):
    """Base exception for all consent store errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "STORE_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to a serializable dictionary."""
        return {"code": self.code, "message": self.message, "details": self.details}


class EntityValidationError(StoreError):
    """A record read back from storage does not match its table definition.

    Raised when:
    - A required field is missing
    - A field value has the wrong type
    - A date value cannot be parsed
    """

    def __init__(
        self,
        message: str,
        entity: str | None = None,
        issues: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"entity": entity, "issues": issues or []},
        )
        self.entity = entity
        self.issues = issues or []


class NotFoundError(StoreError):
    """A record that must exist was not found."""

    def __init__(self, message: str, entity: str | None = None) -> None:
        super().__init__(message, code="NOT_FOUND", details={"entity": entity})
        self.entity = entity


class WriteFailureError(StoreError):
    """The backend accepted a write but returned no record."""

    def __init__(self, message: str, entity: str | None = None) -> None:
        super().__init__(message, code="WRITE_FAILED", details={"entity": entity})
        self.entity = entity


class ConflictError(StoreError):
    """Two inputs that must agree do not.

    Raised when:
    - A subject id and an external subject id point at different subjects
    - Schema sources collide on a physical field name
    """

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=code, details=details)


class FieldConflictError(ConflictError):
    """Two logical fields of one table resolve to the same physical name."""

    def __init__(
        self,
        entity: str,
        physical_name: str,
        fields: list[str],
        sources: list[str],
    ) -> None:
        super().__init__(
            f"Fields {fields} of '{entity}' both map to column '{physical_name}' "
            f"(sources: {sources})",
            code="FIELD_CONFLICT",
            details={
                "entity": entity,
                "physical_name": physical_name,
                "fields": fields,
                "sources": sources,
            },
        )
        self.entity = entity
        self.physical_name = physical_name
        self.fields = fields
        self.sources = sources


class HookRejectedError(StoreError):
    """A before-hook rejected the write. Nothing was persisted."""

    def __init__(self, entity: str, operation: str, reason: str) -> None:
        super().__init__(
            f"{operation} on '{entity}' rejected by hook: {reason}",
            code="HOOK_REJECTED",
            details={"entity": entity, "operation": operation, "reason": reason},
        )
        self.entity = entity
        self.operation = operation
        self.reason = reason


class UnknownEntityError(StoreError):
    """The model key is not part of the assembled schema."""

    def __init__(self, entity: str) -> None:
        super().__init__(
            f"Unknown entity '{entity}'",
            code="UNKNOWN_ENTITY",
            details={"entity": entity},
        )
        self.entity = entity


class AdapterError(StoreError):
    """The storage backend failed to execute an operation."""

    def __init__(
        self,
        message: str,
        adapter: str | None = None,
        code: str = "ADAPTER_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=code, details={"adapter": adapter, **(details or {})})
        self.adapter = adapter


class UniqueViolationError(AdapterError):
    """A write violated a unique constraint."""

    def __init__(self, message: str, adapter: str | None = None) -> None:
        super().__init__(message, adapter=adapter, code="UNIQUE_VIOLATION")


class MigrationError(StoreError):
    """Planning or applying a migration failed. No statement was kept."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="MIGRATION_FAILED", details=details)
