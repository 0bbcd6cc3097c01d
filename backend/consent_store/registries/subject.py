"""
Subject registry.

A subject is the person whose consent is recorded. Subjects are either
anonymous (identified only by our generated id) or identified by an
external id from the host application's identity provider.

find_or_create_subject() rules:
    - subject_id and external_subject_id: both must exist and be the same
      subject, otherwise NotFoundError / ConflictError
    - subject_id only: it must exist, otherwise NotFoundError
    - external_subject_id only: found, or created as an identified subject
    - neither: a new anonymous subject
"""

from __future__ import annotations

from typing import Any

from ..adapters.base import eq
from ..errors import ConflictError, NotFoundError
from ..schema.catalog import utc_now
from .context import RegistryContext

ENTITY = "subject"


async def create_subject(ctx: RegistryContext, data: dict[str, Any]) -> dict[str, Any]:
    return await ctx.pipeline.create(ENTITY, data)


async def find_subject_by_id(ctx: RegistryContext, subject_id: str) -> dict[str, Any] | None:
    return await ctx.pipeline.find_one(ENTITY, [eq("id", subject_id)])


async def find_subject_by_external_id(
    ctx: RegistryContext,
    external_id: str,
) -> dict[str, Any] | None:
    return await ctx.pipeline.find_one(ENTITY, [eq("externalId", external_id)])


async def find_or_create_subject(
    ctx: RegistryContext,
    subject_id: str | None = None,
    external_subject_id: str | None = None,
    ip_address: str = "unknown",
) -> dict[str, Any]:
    """Resolve the subject a request acts for.

    Args:
        subject_id: Our subject id
        external_subject_id: Id in the host application's identity provider
        ip_address: Recorded as lastIpAddress on newly created subjects

    Returns:
        The subject record

    Raises:
        NotFoundError: If a given id does not exist
        ConflictError: If the two ids point at different subjects
    """
    if subject_id and external_subject_id:
        by_id = await find_subject_by_id(ctx, subject_id)
        by_external = await find_subject_by_external_id(ctx, external_subject_id)
        if by_id is None or by_external is None:
            raise NotFoundError(
                f"Subject not found for id {subject_id} / external id {external_subject_id}",
                entity=ENTITY,
            )
        if by_id["id"] != by_external["id"]:
            ctx.logger.warning(
                f"Subject id {subject_id} and external id {external_subject_id} disagree",
                extra={"subject_id": subject_id, "external_subject_id": external_subject_id},
            )
            raise ConflictError(
                "Subject id and external subject id refer to different subjects",
                details={"subject_id": subject_id, "external_subject_id": external_subject_id},
            )
        return by_id

    if subject_id:
        subject = await find_subject_by_id(ctx, subject_id)
        if subject is None:
            raise NotFoundError(f"Subject not found: {subject_id}", entity=ENTITY)
        return subject

    if external_subject_id:

        async def find_or_create(tx: RegistryContext) -> dict[str, Any]:
            existing = await find_subject_by_external_id(tx, external_subject_id)
            if existing is not None:
                return existing
            return await create_subject(
                tx,
                {
                    "externalId": external_subject_id,
                    "identityProvider": "external",
                    "isIdentified": True,
                    "lastIpAddress": ip_address,
                },
            )

        return await ctx.transaction(find_or_create)

    now = utc_now()
    return await create_subject(
        ctx,
        {
            "identityProvider": "anonymous",
            "isIdentified": False,
            "lastIpAddress": ip_address,
            "createdAt": now,
            "updatedAt": now,
        },
    )
