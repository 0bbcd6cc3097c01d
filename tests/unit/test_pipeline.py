"""
Unit tests for the hook pipeline.

Tests cover:
- Defaults and prefixed ID generation
- Before-hooks: Proceed merge, Reject, invalid results
- After-hooks: failures logged, not raised
- Hook ordering across extensions and application hook sets
- Transactions through the pipeline
"""

import logging

import pytest

from backend.consent_store.adapters import InMemoryAdapter, eq
from backend.consent_store.config import Extension, StoreOptions
from backend.consent_store.errors import HookRejectedError, WriteFailureError
from backend.consent_store.hooks import HookPair, HookSet, ModelHooks, Proceed, Reject
from backend.consent_store.pipeline import HookPipeline, default_id
from backend.consent_store.schema import assemble_schema


def _pipeline(options=None):
    options = options or StoreOptions()
    schema = assemble_schema(options)
    return HookPipeline.from_options(InMemoryAdapter(schema), options, schema)


def _before(entity, hook, operation="create"):
    pair = HookPair(before=hook)
    models = ModelHooks(create=pair) if operation == "create" else ModelHooks(update=pair)
    return HookSet(models={entity: models})


def _after(entity, hook):
    return HookSet(models={entity: ModelHooks(create=HookPair(after=hook))})


class TestDefaults:
    """Tests for default values and IDs."""

    @pytest.mark.asyncio
    async def test_id_carries_prefix(self):
        """Generated IDs start with the entity prefix."""
        pipeline = _pipeline()

        domain = await pipeline.create("domain", {"name": "example.com"})

        assert domain["id"].startswith("dom_")

    @pytest.mark.asyncio
    async def test_defaults_applied(self):
        """Fields with defaults are filled when omitted."""
        pipeline = _pipeline()

        subject = await pipeline.create("subject", {})

        assert subject["isIdentified"] is False
        assert subject["subjectTimezone"] == "UTC"
        assert subject["createdAt"] is not None

    @pytest.mark.asyncio
    async def test_explicit_values_kept(self):
        """Caller values win over defaults."""
        pipeline = _pipeline()

        subject = await pipeline.create("subject", {"id": "sub_custom", "subjectTimezone": "Europe/Berlin"})

        assert subject["id"] == "sub_custom"
        assert subject["subjectTimezone"] == "Europe/Berlin"

    @pytest.mark.asyncio
    async def test_custom_id_generator(self):
        """generate_id from options replaces the default generator."""
        pipeline = _pipeline(StoreOptions(generate_id=lambda table: f"{table.entity_prefix}-fixed"))

        domain = await pipeline.create("domain", {"name": "example.com"})

        assert domain["id"] == "dom-fixed"

    def test_default_id_unique(self):
        """default_id does not repeat."""
        pipeline = _pipeline()
        table = pipeline.schema["domain"]

        assert default_id(table) != default_id(table)

    @pytest.mark.asyncio
    async def test_update_does_not_apply_defaults(self):
        """Updates only write what the caller passed."""
        pipeline = _pipeline()
        created = await pipeline.create("domain", {"name": "example.com"})

        updated = await pipeline.update("domain", [eq("id", created["id"])], {"description": "d"})

        assert updated["createdAt"] == created["createdAt"]
        assert updated["updatedAt"] is None


class TestBeforeHooks:
    """Tests for before-hooks."""

    @pytest.mark.asyncio
    async def test_proceed_merges_payload(self):
        """Proceed payloads are merged into the write."""

        def add_description(data, ctx):
            return Proceed({"description": f"{ctx.operation}:{data['name']}"})

        pipeline = _pipeline(StoreOptions(hooks=[_before("domain", add_description)]))

        domain = await pipeline.create("domain", {"name": "example.com"})

        assert domain["description"] == "create:example.com"

    @pytest.mark.asyncio
    async def test_async_hook(self):
        """Coroutine hooks are awaited."""

        async def mark(data, ctx):
            return Proceed({"description": "async"})

        pipeline = _pipeline(StoreOptions(hooks=[_before("domain", mark)]))

        domain = await pipeline.create("domain", {"name": "example.com"})

        assert domain["description"] == "async"

    @pytest.mark.asyncio
    async def test_reject_writes_nothing(self):
        """A rejected create leaves storage untouched."""

        def block(data, ctx):
            return Reject("domains are frozen")

        pipeline = _pipeline(StoreOptions(hooks=[_before("domain", block)]))

        with pytest.raises(HookRejectedError) as exc_info:
            await pipeline.create("domain", {"name": "example.com"})

        assert exc_info.value.code == "HOOK_REJECTED"
        assert "frozen" in str(exc_info.value)
        assert await pipeline.count("domain") == 0

    @pytest.mark.asyncio
    async def test_reject_on_update(self):
        """Update hooks can reject."""

        def block(data, ctx):
            return Reject("read only")

        pipeline = _pipeline(StoreOptions(hooks=[_before("domain", block, operation="update")]))
        created = await pipeline.create("domain", {"name": "example.com"})

        with pytest.raises(HookRejectedError):
            await pipeline.update("domain", [eq("id", created["id"])], {"description": "x"})

        found = await pipeline.find_one("domain", [eq("id", created["id"])])
        assert found["description"] is None

    @pytest.mark.asyncio
    async def test_invalid_return_type(self):
        """Returning anything but Proceed, Reject or None is an error."""
        pipeline = _pipeline(StoreOptions(hooks=[_before("domain", lambda data, ctx: True)]))

        with pytest.raises(TypeError):
            await pipeline.create("domain", {"name": "example.com"})

    @pytest.mark.asyncio
    async def test_extension_hooks_run_first(self):
        """Extension hook sets run before application hook sets."""
        calls = []

        def record(name):
            def hook(data, ctx):
                calls.append(name)

            return hook

        ext = Extension(id="ext", hooks=[_before("domain", record("extension"))])
        pipeline = _pipeline(StoreOptions(extensions=[ext], hooks=[_before("domain", record("app"))]))

        await pipeline.create("domain", {"name": "example.com"})

        assert calls == ["extension", "app"]

    @pytest.mark.asyncio
    async def test_reject_stops_chain(self):
        """Hooks after a Reject do not run."""
        calls = []

        def later(data, ctx):
            calls.append("later")

        pipeline = _pipeline(
            StoreOptions(
                hooks=[
                    _before("domain", lambda data, ctx: Reject("no")),
                    _before("domain", later),
                ]
            )
        )

        with pytest.raises(HookRejectedError):
            await pipeline.create("domain", {"name": "example.com"})

        assert calls == []


class TestAfterHooks:
    """Tests for after-hooks."""

    @pytest.mark.asyncio
    async def test_after_hook_sees_stored_record(self):
        """After-hooks receive the stored record."""
        seen = []
        pipeline = _pipeline(StoreOptions(hooks=[_after("domain", lambda record, ctx: seen.append(record["id"]))]))

        domain = await pipeline.create("domain", {"name": "example.com"})

        assert seen == [domain["id"]]

    @pytest.mark.asyncio
    async def test_after_hook_failure_logged(self, caplog):
        """A failing after-hook is logged and the write stands."""

        def explode(record, ctx):
            raise RuntimeError("downstream unavailable")

        pipeline = _pipeline(StoreOptions(hooks=[_after("domain", explode)]))

        with caplog.at_level(logging.ERROR):
            domain = await pipeline.create("domain", {"name": "example.com"})

        assert domain["name"] == "example.com"
        assert await pipeline.count("domain") == 1
        assert "After-hook for domain.create failed" in caplog.text


class TestPipelineWrites:
    """Tests for write results and transactions."""

    @pytest.mark.asyncio
    async def test_write_failure_when_adapter_returns_nothing(self):
        """A create that yields no record raises WriteFailureError."""

        class NullCreate(InMemoryAdapter):
            async def create(self, model, data):
                return None

        pipeline = _pipeline()
        pipeline = pipeline.bind(NullCreate(pipeline.schema))

        with pytest.raises(WriteFailureError):
            await pipeline.create("domain", {"name": "example.com"})

    @pytest.mark.asyncio
    async def test_update_no_match(self):
        """Updating nothing returns None."""
        pipeline = _pipeline()

        assert await pipeline.update("domain", [eq("id", "dom_missing")], {"name": "x"}) is None

    @pytest.mark.asyncio
    async def test_update_many(self):
        """update_many validates every updated record."""
        pipeline = _pipeline()
        await pipeline.create("domain", {"name": "a.com"})
        await pipeline.create("domain", {"name": "b.com"})

        updated = await pipeline.update_many("domain", [eq("isActive", True)], {"isVerified": False})

        assert len(updated) == 2
        assert all(r["isVerified"] is False for r in updated)

    @pytest.mark.asyncio
    async def test_transaction_rollback(self):
        """A failing transaction rolls back pipeline writes."""
        pipeline = _pipeline()

        async def work(tx):
            await tx.create("domain", {"name": "a.com"})
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await pipeline.transaction(work)

        assert await pipeline.count("domain") == 0

    @pytest.mark.asyncio
    async def test_hook_context_uses_transaction_view(self):
        """Inside a transaction, hooks see the transaction adapter."""
        adapters = []

        def capture(data, ctx):
            adapters.append(ctx.adapter)

        pipeline = _pipeline(StoreOptions(hooks=[_before("domain", capture)]))

        async def work(tx):
            await tx.create("domain", {"name": "a.com"})
            return tx.adapter

        tx_adapter = await pipeline.transaction(work)

        assert adapters == [tx_adapter]
        assert tx_adapter.in_transaction

    @pytest.mark.asyncio
    async def test_find_many_validates(self):
        """find_many returns validated records with datetime fields."""
        pipeline = _pipeline()
        await pipeline.create("domain", {"name": "a.com"})

        rows = await pipeline.find_many("domain")

        assert rows[0]["createdAt"].tzinfo is not None
