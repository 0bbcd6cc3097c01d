"""
Consent policy registry.

Policies are versioned documents. The latest active version of a named
policy is the one new consents point at.
"""

from __future__ import annotations

import hashlib
from typing import Any

from ..adapters.base import SortBy, eq
from ..schema.catalog import utc_now
from .context import RegistryContext

ENTITY = "consentPolicy"

PLACEHOLDER_CONTENT = (
    "[PLACEHOLDER] This is an automatically created version of the {name} policy. "
    "Replace it with the published policy text."
)


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


async def find_policy_by_id(ctx: RegistryContext, policy_id: str) -> dict[str, Any] | None:
    return await ctx.pipeline.find_one(ENTITY, [eq("id", policy_id)])


async def find_latest_policy(ctx: RegistryContext, name: str) -> dict[str, Any] | None:
    return await ctx.pipeline.find_one(
        ENTITY,
        [eq("name", name), eq("isActive", True)],
        sort_by=SortBy("effectiveDate", "desc"),
    )


async def create_policy(
    ctx: RegistryContext,
    name: str,
    version: str,
    content: str,
    effective_date: Any = None,
) -> dict[str, Any]:
    return await ctx.pipeline.create(
        ENTITY,
        {
            "name": name,
            "version": version,
            "content": content,
            "contentHash": content_hash(content),
            "effectiveDate": effective_date or utc_now(),
        },
    )


async def find_or_create_latest_policy(
    ctx: RegistryContext,
    name: str = "privacy_policy",
) -> dict[str, Any]:
    """Return the latest active version of a policy, creating a placeholder if none exists."""

    async def find_or_create(tx: RegistryContext) -> dict[str, Any]:
        latest = await find_latest_policy(tx, name)
        if latest is not None:
            return latest
        tx.logger.warning(f"No active '{name}' policy, creating a placeholder version")
        return await create_policy(tx, name, "1.0.0", PLACEHOLDER_CONTENT.format(name=name))

    return await ctx.transaction(find_or_create)
