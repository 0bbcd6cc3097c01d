"""
Domain registry.

A domain is a website or application origin that collects consent.
Consents always reference one.
"""

from __future__ import annotations

from typing import Any

from ..adapters.base import SortBy, WhereCondition, eq
from .context import RegistryContext

ENTITY = "domain"


async def create_domain(ctx: RegistryContext, data: dict[str, Any]) -> dict[str, Any]:
    """Create a domain.

    Raises:
        WriteFailureError: If the backend returned no record
        UniqueViolationError: If a domain with that name already exists
    """
    domain = await ctx.pipeline.create(ENTITY, data)
    ctx.logger.debug(f"Created domain {domain['name']} ({domain['id']})")
    return domain


async def find_domain_by_name(ctx: RegistryContext, name: str) -> dict[str, Any] | None:
    return await ctx.pipeline.find_one(ENTITY, [eq("name", name)])


async def find_domain_by_id(ctx: RegistryContext, domain_id: str) -> dict[str, Any] | None:
    return await ctx.pipeline.find_one(ENTITY, [eq("id", domain_id)])


async def find_domains(
    ctx: RegistryContext,
    include_inactive: bool = False,
    name: str | None = None,
) -> list[dict[str, Any]]:
    """List domains sorted by name.

    Args:
        include_inactive: Also return domains with isActive false
        name: Only return the domain with this exact name
    """
    where: list[WhereCondition] = []
    if not include_inactive:
        where.append(eq("isActive", True))
    if name is not None:
        where.append(eq("name", name))
    return await ctx.pipeline.find_many(ENTITY, where, sort_by=SortBy("name", "asc"))


async def find_or_create_domain(ctx: RegistryContext, name: str) -> dict[str, Any]:
    """Return the domain with this name, creating it if needed.

    Runs in a transaction so concurrent callers produce one row.
    """

    async def find_or_create(tx: RegistryContext) -> dict[str, Any]:
        existing = await find_domain_by_name(tx, name)
        if existing is not None:
            return existing
        tx.logger.info(f"Auto-creating domain {name}")
        return await create_domain(
            tx,
            {
                "name": name,
                "description": f"Auto-created domain for {name}",
                "isActive": True,
                "isVerified": True,
                "allowedOrigins": [],
            },
        )

    return await ctx.transaction(find_or_create)
