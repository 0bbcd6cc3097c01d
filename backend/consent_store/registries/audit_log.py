"""
Audit log registry.

Audit entries can be written directly or by an after-hook built with
audit_hooks(), which logs every create and update of the given entities.
"""

from __future__ import annotations

from typing import Any

from ..adapters.base import SortBy, eq
from ..hooks import HookContext, HookPair, HookSet, ModelHooks
from .context import RegistryContext

ENTITY = "auditLog"


async def create_audit_log(
    ctx: RegistryContext,
    entity_type: str,
    entity_id: str,
    action_type: str,
    subject_id: str | None = None,
    changes: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> dict[str, Any]:
    return await ctx.pipeline.create(
        ENTITY,
        {
            "entityType": entity_type,
            "entityId": entity_id,
            "actionType": action_type,
            "subjectId": subject_id,
            "changes": changes,
            "metadata": metadata,
            "ipAddress": ip_address,
            "userAgent": user_agent,
        },
    )


async def find_audit_logs(
    ctx: RegistryContext,
    entity_type: str,
    entity_id: str,
) -> list[dict[str, Any]]:
    """Audit entries for one record, oldest first."""
    return await ctx.pipeline.find_many(
        ENTITY,
        [eq("entityType", entity_type), eq("entityId", entity_id)],
        sort_by=SortBy("createdAt"),
    )


def audit_hooks(*entities: str) -> HookSet:
    """Build a HookSet that writes an audit entry after each create and update.

    Example:
        >>> options = StoreOptions(hooks=[audit_hooks("consent", "domain")])
    """

    async def record(row: dict[str, Any], context: HookContext) -> None:
        subject_id = row.get("subjectId") if context.entity != "subject" else row.get("id")
        await context.pipeline.create(
            ENTITY,
            {
                "entityType": context.entity,
                "entityId": row["id"],
                "actionType": f"{context.entity}.{context.operation}",
                "subjectId": subject_id,
            },
        )

    pair = HookPair(after=record)
    return HookSet(
        models={entity: ModelHooks(create=pair, update=pair) for entity in entities},
        name="audit",
    )
