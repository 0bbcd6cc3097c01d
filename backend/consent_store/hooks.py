"""
Hook types for the write pipeline.

A before-hook inspects the pending write and answers with one of:
- Proceed(payload): continue, merging payload (may be empty) into the write
- Reject(reason): abort; nothing is written
- None: continue unchanged

An after-hook receives the stored record. Its return value is ignored.

Hooks may be plain functions or coroutines.

Invariants:
    - Hook sets run in registration order: extension hooks, then application hooks
    - A Reject stops the chain; later hooks do not run
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Union

if TYPE_CHECKING:
    from .adapters.base import Adapter
    from .pipeline import HookPipeline


@dataclass(frozen=True)
class Proceed:
    """Continue the write, merging payload into the data."""

    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Reject:
    """Abort the write."""

    reason: str


HookResult = Optional[Union[Proceed, Reject]]


@dataclass(frozen=True)
class HookContext:
    """What a hook can see besides the record.

    Attributes:
        entity: Entity key being written
        operation: "create" or "update"
        adapter: Adapter the write goes through (a transaction view inside a transaction)
        pipeline: Pipeline bound to that adapter, for follow-up writes
    """

    entity: str
    operation: str
    adapter: Adapter
    pipeline: HookPipeline


BeforeHook = Callable[[dict[str, Any], HookContext], Union[HookResult, Awaitable[HookResult]]]
AfterHook = Callable[[dict[str, Any], HookContext], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class HookPair:
    before: BeforeHook | None = None
    after: AfterHook | None = None


@dataclass(frozen=True)
class ModelHooks:
    create: HookPair = field(default_factory=HookPair)
    update: HookPair = field(default_factory=HookPair)

    def for_operation(self, operation: str) -> HookPair:
        if operation == "create":
            return self.create
        if operation == "update":
            return self.update
        raise ValueError(f"Unknown hook operation '{operation}'")


@dataclass(frozen=True)
class HookSet:
    """Hooks keyed by entity key.

    Example:
        >>> def block_essential(data, ctx):
        ...     if data.get("isEssential") and not data.get("legalBasis"):
        ...         return Reject("essential purposes need a legal basis")
        >>> hooks = HookSet(models={"consentPurpose": ModelHooks(create=HookPair(before=block_essential))})
    """

    models: dict[str, ModelHooks] = field(default_factory=dict)
    name: str = ""

    def get(self, entity: str, operation: str) -> HookPair | None:
        hooks = self.models.get(entity)
        return hooks.for_operation(operation) if hooks else None
