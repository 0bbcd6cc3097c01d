"""
Hook pipeline: the single write path for every entity.

create() runs, in order:
    1. entity defaults for fields the caller left out, plus a prefixed id
    2. before-hooks (Proceed merges, Reject aborts)
    3. the adapter write
    4. after-hooks (failures logged, never raised)
    5. output validation

update() / update_many() follow the same steps without defaults.

Invariants:
    - A rejected write never reaches the adapter
    - A create that returns no record raises WriteFailureError
    - Every record handed back to callers has passed validate_output()
    - The logger is injected, never a global singleton
"""

from __future__ import annotations

import inspect
import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any, TypeVar

from .errors import HookRejectedError, WriteFailureError
from .hooks import HookContext, HookSet, Proceed, Reject
from .schema.assembly import assemble_schema
from .schema.types import PRIMARY_KEY, TableDef
from .schema.validation import validate_output

if TYPE_CHECKING:
    from .adapters.base import Adapter, SortBy, WhereInput
    from .config import StoreOptions
    from .schema.registry import Schema

logger = logging.getLogger(__name__)

T = TypeVar("T")


def default_id(table: TableDef) -> str:
    """Generate a record id carrying the table's prefix."""
    return f"{table.entity_prefix}_{uuid.uuid4().hex}"


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class HookPipeline:
    """Hook-aware, validating front of an adapter.

    Attributes:
        adapter: Adapter writes go through
        schema: Assembled schema used for defaults and validation

    Example:
        >>> pipeline = HookPipeline.from_options(InMemoryAdapter(schema), options, schema)
        >>> domain = await pipeline.create("domain", {"name": "example.com"})
        >>> domain["id"].startswith("dom_")
        True
    """

    def __init__(
        self,
        adapter: Adapter,
        schema: Schema,
        hooks: Sequence[HookSet] = (),
        generate_id: Callable[[TableDef], str] | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.adapter = adapter
        self.schema = schema
        self._hooks = list(hooks)
        self._generate_id = generate_id or default_id
        self._log = log or logger

    @classmethod
    def from_options(
        cls,
        adapter: Adapter,
        options: StoreOptions,
        schema: Schema | None = None,
    ) -> HookPipeline:
        return cls(
            adapter,
            schema if schema is not None else assemble_schema(options),
            hooks=options.all_hook_sets(),
            generate_id=options.generate_id,
            log=options.logger,
        )

    def bind(self, adapter: Adapter) -> HookPipeline:
        """Same hooks and schema over a different adapter (e.g. a transaction view)."""
        return HookPipeline(
            adapter,
            self.schema,
            hooks=self._hooks,
            generate_id=self._generate_id,
            log=self._log,
        )

    async def transaction(self, callback: Callable[[HookPipeline], Awaitable[T]]) -> T:
        """Run callback with a pipeline bound to a transaction view."""

        async def run(tx: Adapter) -> T:
            return await callback(self.bind(tx))

        return await self.adapter.transaction(run)

    def apply_defaults(self, table: TableDef, data: dict[str, Any]) -> dict[str, Any]:
        result = dict(data)
        if result.get(PRIMARY_KEY) is None:
            result[PRIMARY_KEY] = self._generate_id(table)
        for name, definition in table.fields.items():
            if result.get(name) is None and definition.has_default:
                result[name] = definition.resolve_default()
        return result

    def _context(self, entity: str, operation: str) -> HookContext:
        return HookContext(entity=entity, operation=operation, adapter=self.adapter, pipeline=self)

    async def _run_before(self, entity: str, operation: str, data: dict[str, Any]) -> dict[str, Any]:
        context = self._context(entity, operation)
        for hook_set in self._hooks:
            pair = hook_set.get(entity, operation)
            if pair is None or pair.before is None:
                continue
            result = await _maybe_await(pair.before(dict(data), context))
            if isinstance(result, Reject):
                self._log.info(
                    f"{operation} on {entity} rejected by hook: {result.reason}",
                    extra={"entity": entity, "operation": operation, "hook_set": hook_set.name},
                )
                raise HookRejectedError(entity, operation, result.reason)
            if isinstance(result, Proceed):
                data = {**data, **result.payload}
            elif result is not None:
                raise TypeError(
                    f"Before-hook for {entity}.{operation} returned {type(result).__name__}, "
                    "expected Proceed, Reject or None"
                )
        return data

    async def _run_after(self, entity: str, operation: str, record: dict[str, Any]) -> None:
        context = self._context(entity, operation)
        for hook_set in self._hooks:
            pair = hook_set.get(entity, operation)
            if pair is None or pair.after is None:
                continue
            try:
                await _maybe_await(pair.after(dict(record), context))
            except Exception:
                self._log.error(
                    f"After-hook for {entity}.{operation} failed on {record.get(PRIMARY_KEY)}",
                    exc_info=True,
                    extra={"entity": entity, "operation": operation, "hook_set": hook_set.name},
                )

    async def create(self, model: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a record through hooks and validation.

        Args:
            model: Entity key
            data: Field values (logical names)

        Returns:
            The validated stored record

        Raises:
            HookRejectedError: If a before-hook rejected the write
            WriteFailureError: If the adapter returned no record
            EntityValidationError: If the stored record is invalid
        """
        table = self.schema.table(model)
        data = await self._run_before(model, "create", self.apply_defaults(table, data))
        record = await self.adapter.create(model, data)
        if record is None:
            raise WriteFailureError(f"Failed to create {model} record", entity=model)
        await self._run_after(model, "create", record)
        return validate_output(model, record, self.schema)

    async def update(
        self,
        model: str,
        where: WhereInput,
        data: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Update the first matching record.

        Returns:
            The validated record, or None if nothing matched
        """
        self.schema.table(model)
        data = await self._run_before(model, "update", dict(data))
        record = await self.adapter.update(model, where, data)
        if record is None:
            return None
        await self._run_after(model, "update", record)
        return validate_output(model, record, self.schema)

    async def update_many(
        self,
        model: str,
        where: WhereInput,
        data: dict[str, Any],
    ) -> list[dict[str, Any]]:
        self.schema.table(model)
        data = await self._run_before(model, "update", dict(data))
        records = await self.adapter.update_many(model, where, data)
        for record in records:
            await self._run_after(model, "update", record)
        return [validate_output(model, record, self.schema) for record in records]

    async def find_one(
        self,
        model: str,
        where: WhereInput,
        sort_by: SortBy | None = None,
    ) -> dict[str, Any] | None:
        record = await self.adapter.find_one(model, where, sort_by=sort_by)
        return validate_output(model, record, self.schema) if record is not None else None

    async def find_many(
        self,
        model: str,
        where: WhereInput = None,
        sort_by: SortBy | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        records = await self.adapter.find_many(
            model, where, sort_by=sort_by, limit=limit, offset=offset
        )
        return [validate_output(model, record, self.schema) for record in records]

    async def count(self, model: str, where: WhereInput = None) -> int:
        return await self.adapter.count(model, where)

    async def delete_many(self, model: str, where: WhereInput) -> int:
        return await self.adapter.delete_many(model, where)
