"""Unit tests for AdminService (engine/admin.py)."""

from __future__ import annotations

import pytest

from personalization_engine.domain.catalog import Definitions, default_definitions
from personalization_engine.domain.models import AutomationStatus
from personalization_engine.domain.validation import ValidationError
from personalization_engine.errors import DefinitionNotFoundError
from tests.fixtures.profiles import make_automation, make_rule, make_segment, when


class TestLoad:
    async def test_default_catalog_is_seeded(self, engine, storage) -> None:
        catalog = default_definitions()
        assert {r.id for r in engine.admin.list_rules()} == {r.id for r in catalog.rules}
        assert len(await storage.definitions.load_segments()) == len(catalog.segments)
        assert engine.orchestrator.get_automation("welcome-series") is not None

    async def test_stored_definitions_win_over_seed(self, bare_engine, storage) -> None:
        await bare_engine.admin.add_rule(make_rule(id="custom"))

        from personalization_engine.engine.bootstrap import build_engine
        from personalization_engine.settings import Settings

        runtime = await build_engine(
            Settings(storage_backend="memory", definitions_path=None),
            storage=storage,
            seed=default_definitions(),
        )
        assert [r.id for r in runtime.engine.admin.list_rules()] == ["custom"]

    async def test_empty_seed_leaves_repository_empty(self, bare_engine, storage) -> None:
        assert Definitions().is_empty
        assert await storage.definitions.load_rules() == []
        assert bare_engine.orchestrator.automations() == []


class TestRules:
    async def test_add_persists(self, bare_engine, storage) -> None:
        await bare_engine.admin.add_rule(make_rule())
        assert [r.id for r in await storage.definitions.load_rules()] == ["rule-1"]

    async def test_duplicate_rejected(self, bare_engine) -> None:
        await bare_engine.admin.add_rule(make_rule())
        with pytest.raises(ValidationError) as exc_info:
            await bare_engine.admin.add_rule(make_rule())
        assert exc_info.value.field == "id"

    async def test_invalid_rule_not_persisted(self, bare_engine, storage) -> None:
        with pytest.raises(ValidationError):
            await bare_engine.admin.add_rule(make_rule(conditions=[when("x", "bogus")]))
        assert await storage.definitions.load_rules() == []

    async def test_update_accepts_camel_case(self, bare_engine, storage) -> None:
        await bare_engine.admin.add_rule(make_rule())
        updated = await bare_engine.admin.update_rule("rule-1", {"priority": 1, "enabled": False})
        assert updated.priority == 1
        assert updated.enabled is False
        [stored] = await storage.definitions.load_rules()
        assert stored.enabled is False

    async def test_update_rejects_immutable_field(self, bare_engine) -> None:
        await bare_engine.admin.add_rule(make_rule())
        with pytest.raises(ValidationError) as exc_info:
            await bare_engine.admin.update_rule("rule-1", {"id": "other"})
        assert exc_info.value.field == "id"

    async def test_update_revalidates(self, bare_engine) -> None:
        await bare_engine.admin.add_rule(make_rule())
        with pytest.raises(ValidationError):
            await bare_engine.admin.update_rule(
                "rule-1", {"conditions": [{"field": "x", "operator": "bogus"}]}
            )

    async def test_unknown_rule(self, bare_engine) -> None:
        with pytest.raises(DefinitionNotFoundError):
            await bare_engine.admin.update_rule("missing", {"priority": 1})
        with pytest.raises(DefinitionNotFoundError):
            await bare_engine.admin.remove_rule("missing")

    async def test_remove(self, bare_engine, storage) -> None:
        await bare_engine.admin.add_rule(make_rule())
        await bare_engine.admin.remove_rule("rule-1")
        assert bare_engine.admin.list_rules() == []
        assert await storage.definitions.load_rules() == []


class TestSegments:
    async def test_add_recomputes_existing_profiles(self, bare_engine) -> None:
        await bare_engine.ingest("sub-1", "page_view", {"url": "/"})
        assert (await bare_engine.get_profile("sub-1")).segments == set()

        await bare_engine.admin.add_segment_definition(make_segment())
        assert (await bare_engine.get_profile("sub-1")).segments == {"browsers"}

    async def test_remove_recomputes(self, bare_engine) -> None:
        await bare_engine.admin.add_segment_definition(make_segment())
        await bare_engine.ingest("sub-1", "page_view", {"url": "/"})
        await bare_engine.admin.remove_segment_definition("browsers")
        assert (await bare_engine.get_profile("sub-1")).segments == set()

    async def test_invalid_segment(self, bare_engine) -> None:
        with pytest.raises(ValidationError):
            await bare_engine.admin.add_segment_definition(
                make_segment(conditions=[when("x", "between", 1)])
            )

    async def test_remove_unknown(self, bare_engine) -> None:
        with pytest.raises(DefinitionNotFoundError):
            await bare_engine.admin.remove_segment_definition("missing")


class TestAutomations:
    async def test_add_and_duplicate(self, bare_engine, storage) -> None:
        await bare_engine.admin.add_automation(make_automation())
        assert [a.id for a in await storage.definitions.load_automations()] == ["auto-1"]
        with pytest.raises(ValidationError):
            await bare_engine.admin.add_automation(make_automation())

    async def test_pause_persists_status(self, bare_engine, storage) -> None:
        await bare_engine.admin.add_automation(make_automation())
        await bare_engine.admin.pause_automation("auto-1")
        [stored] = await storage.definitions.load_automations()
        assert stored.status == AutomationStatus.PAUSED

    async def test_cancel_instance_unknown_automation(self, bare_engine) -> None:
        with pytest.raises(DefinitionNotFoundError):
            await bare_engine.admin.cancel_instance("missing", "sub-1")


class TestSharedRepository:
    """Two engines over one repository, as the API and a worker process run."""

    @pytest.fixture()
    async def other_engine(self, bare_engine, storage, clock):
        from personalization_engine.engine.bootstrap import Collaborators, build_engine
        from personalization_engine.settings import Settings

        runtime = await build_engine(
            Settings(storage_backend="memory", definitions_path=None),
            clock=clock,
            collaborators=Collaborators.recording(),
            storage=storage,
            seed=Definitions(),
        )
        return runtime.engine

    async def test_pause_reaches_other_process(self, bare_engine, other_engine) -> None:
        await bare_engine.admin.add_automation(make_automation())
        await bare_engine.admin.pause_automation("auto-1")

        result = await other_engine.ingest("sub-2", "signup", {"email": "sub-2@example.com"})
        assert result.started == []
        assert other_engine.orchestrator.get_automation("auto-1").status == (
            AutomationStatus.PAUSED
        )

    async def test_new_rule_reaches_other_process(self, bare_engine, other_engine) -> None:
        await bare_engine.admin.add_rule(make_rule(id="late"))
        assert await other_engine.admin.refresh() is True
        assert [r.id for r in other_engine.admin.list_rules()] == ["late"]
        assert await other_engine.admin.refresh() is False

    async def test_removed_segment_reaches_other_process(self, bare_engine, other_engine) -> None:
        await bare_engine.admin.add_segment_definition(make_segment(name="gone"))
        await other_engine.admin.refresh()
        await bare_engine.admin.remove_segment_definition("gone")
        await other_engine.admin.refresh()
        assert other_engine.admin.list_segments() == []
