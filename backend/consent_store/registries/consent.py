"""
Consent registry.

Giving consent writes the consent row, one junction row per purpose and a
consentRecord history entry in a single transaction. Withdrawing flips the
consent and its purpose links to "withdrawn" and records who withdrew and
why.
"""

from __future__ import annotations

from typing import Any

from ..adapters.base import SortBy, WhereCondition, eq
from ..errors import ConflictError, NotFoundError
from ..schema.catalog import utc_now
from .context import RegistryContext

ENTITY = "consent"


async def find_consent_by_id(ctx: RegistryContext, consent_id: str) -> dict[str, Any] | None:
    return await ctx.pipeline.find_one(ENTITY, [eq("id", consent_id)])


async def find_consents(
    ctx: RegistryContext,
    subject_id: str | None = None,
    domain_id: str | None = None,
    include_inactive: bool = False,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """List consents, newest first."""
    where: list[WhereCondition] = []
    if subject_id is not None:
        where.append(eq("subjectId", subject_id))
    if domain_id is not None:
        where.append(eq("domainId", domain_id))
    if not include_inactive:
        where.append(eq("isActive", True))
    return await ctx.pipeline.find_many(
        ENTITY, where, sort_by=SortBy("givenAt", "desc"), limit=limit
    )


async def create_consent(ctx: RegistryContext, data: dict[str, Any]) -> dict[str, Any]:
    """Record a consent with its purpose links and history entry.

    Args:
        data: Consent fields; purposeIds lists the consentPurpose ids covered

    Returns:
        The consent record

    Raises:
        HookRejectedError: If a hook vetoed any of the writes; nothing is kept
    """
    purpose_ids = list(data.get("purposeIds") or [])

    async def write(tx: RegistryContext) -> dict[str, Any]:
        consent = await tx.pipeline.create(ENTITY, {**data, "purposeIds": purpose_ids})
        for purpose_id in purpose_ids:
            await tx.pipeline.create(
                "consentPurposeJunction",
                {"consentId": consent["id"], "purposeId": purpose_id},
            )
        await tx.pipeline.create(
            "consentRecord",
            {
                "subjectId": consent["subjectId"],
                "consentId": consent["id"],
                "actionType": "consent_given",
                "details": {"purposeIds": purpose_ids, "domainId": consent["domainId"]},
            },
        )
        return consent

    consent = await ctx.transaction(write)
    ctx.logger.info(
        f"Recorded consent {consent['id']} for subject {consent['subjectId']}",
        extra={"consent_id": consent["id"], "purposes": len(purpose_ids)},
    )
    return consent


async def withdraw_consent(
    ctx: RegistryContext,
    consent_id: str,
    reason: str | None = None,
    method: str = "subject-initiated",
    ip_address: str | None = None,
    user_agent: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Withdraw a consent.

    Returns:
        The consentWithdrawal record

    Raises:
        NotFoundError: If the consent does not exist
        ConflictError: If it was already withdrawn
    """

    async def write(tx: RegistryContext) -> dict[str, Any]:
        consent = await find_consent_by_id(tx, consent_id)
        if consent is None:
            raise NotFoundError(f"Consent not found: {consent_id}", entity=ENTITY)
        if consent["status"] == "withdrawn":
            raise ConflictError(
                f"Consent {consent_id} is already withdrawn",
                details={"consent_id": consent_id},
            )

        await tx.pipeline.update(
            ENTITY,
            [eq("id", consent_id)],
            {"status": "withdrawn", "isActive": False, "withdrawalReason": reason},
        )
        await tx.pipeline.update_many(
            "consentPurposeJunction",
            [eq("consentId", consent_id)],
            {"status": "withdrawn", "updatedAt": utc_now()},
        )
        withdrawal = await tx.pipeline.create(
            "consentWithdrawal",
            {
                "consentId": consent_id,
                "subjectId": consent["subjectId"],
                "withdrawalReason": reason,
                "withdrawalMethod": method,
                "ipAddress": ip_address,
                "userAgent": user_agent,
                "metadata": metadata,
            },
        )
        await tx.pipeline.create(
            "consentRecord",
            {
                "subjectId": consent["subjectId"],
                "consentId": consent_id,
                "actionType": "consent_withdrawn",
                "details": {"reason": reason, "method": method},
            },
        )
        return withdrawal

    return await ctx.transaction(write)
