"""
Consent purpose registry.

Purposes are looked up by their stable code ("analytics", "marketing").
"""

from __future__ import annotations

from typing import Any

from ..adapters.base import SortBy, eq
from .context import RegistryContext

ENTITY = "consentPurpose"


async def find_purpose_by_code(ctx: RegistryContext, code: str) -> dict[str, Any] | None:
    return await ctx.pipeline.find_one(ENTITY, [eq("code", code)])


async def find_purposes(ctx: RegistryContext, include_inactive: bool = False) -> list[dict[str, Any]]:
    where = [] if include_inactive else [eq("isActive", True)]
    return await ctx.pipeline.find_many(ENTITY, where, sort_by=SortBy("code"))


async def find_or_create_purpose(
    ctx: RegistryContext,
    code: str,
    name: str | None = None,
    description: str | None = None,
    is_essential: bool = False,
) -> dict[str, Any]:
    """Return the purpose with this code, creating it if needed."""

    async def find_or_create(tx: RegistryContext) -> dict[str, Any]:
        existing = await find_purpose_by_code(tx, code)
        if existing is not None:
            return existing
        return await tx.pipeline.create(
            ENTITY,
            {
                "code": code,
                "name": name or code,
                "description": description or f"Auto-created consent purpose for {code}",
                "isEssential": is_essential,
            },
        )

    return await ctx.transaction(find_or_create)
