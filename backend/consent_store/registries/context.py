"""
Explicit dependencies shared by the entity registries.

Registries are plain async functions taking a RegistryContext first. There
is no module-level adapter, pipeline or logger.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, TypeVar

from ..pipeline import HookPipeline
from ..schema.assembly import assemble_schema

if TYPE_CHECKING:
    from ..adapters.base import Adapter
    from ..config import StoreOptions
    from ..schema.registry import Schema

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryContext:
    """Adapter, pipeline, schema and logger for registry operations.

    Example:
        >>> ctx = RegistryContext.create(InMemoryAdapter(schema), StoreOptions())
        >>> domain = await find_or_create_domain(ctx, "example.com")
    """

    pipeline: HookPipeline
    options: StoreOptions
    logger: logging.Logger

    @property
    def adapter(self) -> Adapter:
        return self.pipeline.adapter

    @property
    def schema(self) -> Schema:
        return self.pipeline.schema

    @classmethod
    def create(
        cls,
        adapter: Adapter,
        options: StoreOptions,
        schema: Schema | None = None,
    ) -> RegistryContext:
        """Build a context, assembling the schema from options unless given."""
        if schema is None:
            schema = getattr(adapter, "schema", None) or assemble_schema(options)
        pipeline = HookPipeline.from_options(adapter, options, schema)
        return cls(pipeline=pipeline, options=options, logger=options.logger or logger)

    async def transaction(self, callback: Callable[[RegistryContext], Awaitable[T]]) -> T:
        """Run callback with a context bound to a transaction view."""

        async def run(pipeline: HookPipeline) -> T:
            return await callback(replace(self, pipeline=pipeline))

        return await self.pipeline.transaction(run)
