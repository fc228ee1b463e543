from dataclasses import dataclass

import pytest
from crm_orm import (
    All,
    EntityCollection,
    EntityManager,
    Identified,
    Reference,
    RelationOverride,
    Repository,
)
from crm_orm.repository import resolve_foreign
from pydantic import BaseModel

pytestmark = pytest.mark.asyncio


def _entity(em, entity_type, id=None, **values):
    entity = em.entity_factory.create(entity_type)
    if id is not None:
        entity.id = id
    entity.set(values)
    return entity


class HookLog:
    def __init__(self):
        self.calls = []

    def recorder(self, name):
        async def record(*args):
            self.calls.append(name)
            return True

        return record


class RecordingRelationsRepository(Repository):
    log: HookLog

    async def before_relate(self, entity, relation_name, foreign, data, options):
        self.log.calls.append("before_relate")

    async def after_relate(self, entity, relation_name, foreign, data, options):
        self.log.calls.append("after_relate")

    async def before_unrelate(self, entity, relation_name, foreign, options):
        self.log.calls.append("before_unrelate")

    async def after_unrelate(self, entity, relation_name, foreign, options):
        self.log.calls.append("after_unrelate")

    async def before_mass_relate(self, entity, relation_name, params, options):
        self.log.calls.append("before_mass_relate")

    async def after_mass_relate(self, entity, relation_name, params, options):
        self.log.calls.append("after_mass_relate")


@pytest.fixture
def log():
    return HookLog()


@pytest.fixture
def hooked_em(metadata, mapper, log):
    repository_class = type(
        "AccountRepository", (RecordingRelationsRepository,), {"log": log}
    )
    return EntityManager(
        None, metadata, mapper=mapper, repositories={"Account": repository_class}
    )


class TestResolveForeign:
    async def test_variants(self, mock_em):
        team = _entity(mock_em, "Team", "t1")
        assert resolve_foreign(team) == Identified(team)
        assert resolve_foreign("t1") == Reference("t1")
        assert resolve_foreign(True) == All()

    @pytest.mark.parametrize("value", [False, None, 42, ["t1"]])
    async def test_unsupported_values(self, value):
        assert resolve_foreign(value) is None

    async def test_resolved_values_pass_through(self):
        reference = Reference("t1")
        assert resolve_foreign(reference) is reference


class TestRelate:
    async def test_entity_without_id_returns_false(self, hooked_em, mapper, log):
        """Nothing reaches the mapper or the hooks for an unsaved entity."""
        repo = hooked_em.get_repository("Account")
        account = _entity(hooked_em, "Account")
        team = _entity(hooked_em, "Team", "t1")

        assert await repo.relate(account, "teams", team) is False
        mapper.relate.assert_not_awaited()
        mapper.add_relation.assert_not_awaited()
        assert log.calls == []

    async def test_unknown_relation_returns_false(self, mock_em, mapper):
        repo = mock_em.get_repository("Account")
        account = _entity(mock_em, "Account", "a1")
        assert await repo.relate(account, "projects", "p1") is False
        mapper.add_relation.assert_not_awaited()

    async def test_entity_foreign_delegates_to_relate(self, hooked_em, mapper, log):
        mapper.relate.return_value = True
        repo = hooked_em.get_repository("Account")
        account = _entity(hooked_em, "Account", "a1")
        team = _entity(hooked_em, "Team", "t1")

        assert await repo.relate(account, "teams", team, {"role": "Lead"}) is True
        mapper.relate.assert_awaited_once_with(account, "teams", team, {"role": "Lead"})
        assert log.calls == ["before_relate", "after_relate"]

    async def test_id_foreign_delegates_to_add_relation(self, mock_em, mapper):
        mapper.add_relation.return_value = True
        repo = mock_em.get_repository("Account")
        account = _entity(mock_em, "Account", "a1")

        assert await repo.relate(account, "teams", "t1") is True
        mapper.add_relation.assert_awaited_once_with(account, "teams", "t1", None, None)

    async def test_falsy_result_skips_after_hooks(self, hooked_em, mapper, log):
        mapper.relate.return_value = False
        repo = hooked_em.get_repository("Account")
        account = _entity(hooked_em, "Account", "a1")
        team = _entity(hooked_em, "Team", "t1")

        assert await repo.relate(account, "teams", team) is False
        assert log.calls == ["before_relate"]

    async def test_unsupported_foreign_returns_false(self, hooked_em, mapper, log):
        repo = hooked_em.get_repository("Account")
        account = _entity(hooked_em, "Account", "a1")

        assert await repo.relate(account, "teams", 42) is False
        mapper.relate.assert_not_awaited()
        mapper.add_relation.assert_not_awaited()
        assert log.calls == ["before_relate"]

    async def test_object_data_is_normalized(self, mock_em, mapper):
        @dataclass
        class Role:
            role: str

        class RoleModel(BaseModel):
            role: str

        class PlainRole:
            def __init__(self):
                self.role = "Viewer"

        mapper.add_relation.return_value = True
        repo = mock_em.get_repository("Account")
        account = _entity(mock_em, "Account", "a1")

        for data, expected in [
            (Role("Lead"), {"role": "Lead"}),
            (RoleModel(role="Member"), {"role": "Member"}),
            (PlainRole(), {"role": "Viewer"}),
        ]:
            await repo.relate(account, "teams", "t1", data)
            assert mapper.add_relation.await_args.args[4] == expected

    async def test_unsupported_data_returns_false(self, hooked_em, mapper, log):
        repo = hooked_em.get_repository("Account")
        account = _entity(hooked_em, "Account", "a1")

        for data in (["not", "a", "mapping"], ("role", "Lead"), 7, "Lead"):
            assert await repo.relate(account, "teams", "t1", data) is False
        mapper.add_relation.assert_not_awaited()
        assert log.calls == []

    async def test_hooks_receive_data_as_given(self, metadata, mapper):
        @dataclass
        class Role:
            role: str

        received = []

        class AccountRepository(Repository):
            async def before_relate(self, entity, relation_name, foreign, data, options):
                received.append(data)

            async def after_relate(self, entity, relation_name, foreign, data, options):
                received.append(data)

        em = EntityManager(
            None, metadata, mapper=mapper, repositories={"Account": AccountRepository}
        )
        mapper.add_relation.return_value = True
        role = Role("Lead")

        repo = em.get_repository("Account")
        await repo.relate(_entity(em, "Account", "a1"), "teams", "t1", role)

        assert received == [role, role]
        assert mapper.add_relation.await_args.args[4] == {"role": "Lead"}


class TestRelationOverrides:
    async def test_generic_and_specific_hooks_both_run(self, metadata, mapper, log):
        """The override hooks run after the generic ones; dispatch stays generic."""
        repository_class = type(
            "AccountRepository",
            (RecordingRelationsRepository,),
            {
                "log": log,
                "relation_overrides": {
                    "teams": RelationOverride(
                        before_relate=log.recorder("before_relate_teams"),
                        after_relate=log.recorder("after_relate_teams"),
                    )
                },
            },
        )
        em = EntityManager(
            None, metadata, mapper=mapper, repositories={"Account": repository_class}
        )
        mapper.add_relation.return_value = True
        repo = em.get_repository("Account")
        account = _entity(em, "Account", "a1")

        assert await repo.relate(account, "teams", "t1") is True
        mapper.add_relation.assert_awaited_once()
        assert log.calls == [
            "before_relate",
            "before_relate_teams",
            "after_relate",
            "after_relate_teams",
        ]

    async def test_specific_operation_replaces_mapper_call(self, metadata, mapper, log):
        received = []

        async def relate_teams(repository, entity, foreign, data, options):
            received.append((repository.entity_type, entity.id, foreign, data, options))
            return True

        class AccountRepository(Repository):
            relation_overrides = {"teams": RelationOverride(relate=relate_teams)}

        em = EntityManager(
            None, metadata, mapper=mapper, repositories={"Account": AccountRepository}
        )
        repo = em.get_repository("Account")
        account = _entity(em, "Account", "a1")

        assert await repo.relate(account, "teams", "t1", {"role": "Lead"}, {"silent": True})
        mapper.add_relation.assert_not_awaited()
        mapper.relate.assert_not_awaited()
        assert received == [("Account", "a1", "t1", {"role": "Lead"}, {"silent": True})]

    async def test_overrides_only_apply_to_their_relation(self, metadata, mapper, log):
        class AccountRepository(Repository):
            relation_overrides = {
                "teams": RelationOverride(before_relate=log.recorder("teams_only"))
            }

        em = EntityManager(
            None, metadata, mapper=mapper, repositories={"Account": AccountRepository}
        )
        mapper.add_relation.return_value = True
        account = _entity(em, "Account", "a1")
        await em.get_repository("Account").relate(account, "contacts", "c1")
        assert log.calls == []

    async def test_unrelate_override_operation(self, metadata, mapper, log):
        class AccountRepository(Repository):
            relation_overrides = {
                "teams": RelationOverride(
                    before_unrelate=log.recorder("before_unrelate_teams"),
                    unrelate=log.recorder("unrelate_teams"),
                    after_unrelate=log.recorder("after_unrelate_teams"),
                )
            }

        em = EntityManager(
            None, metadata, mapper=mapper, repositories={"Account": AccountRepository}
        )
        account = _entity(em, "Account", "a1")
        assert await em.get_repository("Account").unrelate(account, "teams", "t1") is True
        mapper.remove_relation.assert_not_awaited()
        assert log.calls == [
            "before_unrelate_teams",
            "unrelate_teams",
            "after_unrelate_teams",
        ]


class TestUnrelate:
    async def test_true_removes_all_and_fires_after_hook_once(self, hooked_em, mapper, log):
        mapper.remove_all_relations.return_value = True
        repo = hooked_em.get_repository("Account")
        account = _entity(hooked_em, "Account", "a1")

        assert await repo.unrelate(account, "teams", True) is True
        mapper.remove_all_relations.assert_awaited_once_with(account, "teams")
        mapper.remove_relation.assert_not_awaited()
        assert log.calls.count("after_unrelate") == 1

    async def test_entity_and_id_dispatch(self, mock_em, mapper):
        mapper.unrelate.return_value = True
        mapper.remove_relation.return_value = True
        repo = mock_em.get_repository("Account")
        account = _entity(mock_em, "Account", "a1")
        team = _entity(mock_em, "Team", "t1")

        assert await repo.unrelate(account, "teams", team) is True
        mapper.unrelate.assert_awaited_once_with(account, "teams", team)
        assert await repo.unrelate(account, "teams", "t1") is True
        mapper.remove_relation.assert_awaited_once_with(account, "teams", "t1")

    async def test_unsupported_foreign_skips_after_hooks(self, hooked_em, mapper, log):
        repo = hooked_em.get_repository("Account")
        account = _entity(hooked_em, "Account", "a1")

        assert await repo.unrelate(account, "teams", False) is False
        assert log.calls == ["before_unrelate"]

    async def test_entity_without_id(self, mock_em, mapper):
        repo = mock_em.get_repository("Account")
        assert await repo.unrelate(_entity(mock_em, "Account"), "teams", True) is False
        mapper.remove_all_relations.assert_not_awaited()


class TestRelatedReads:
    async def test_find_related_without_id_returns_none(self, mock_em, mapper):
        repo = mock_em.get_repository("Account")
        assert await repo.find_related(_entity(mock_em, "Account"), "contacts") is None
        mapper.select_related.assert_not_awaited()

    async def test_find_related_applies_target_repository_hook(self, metadata, mapper):
        class ContactRepository(Repository):
            def handle_select_params(self, params):
                return params.model_copy(update={"order_by": "name"})

        em = EntityManager(
            None, metadata, mapper=mapper, repositories={"Contact": ContactRepository}
        )
        mapper.select_related.return_value = EntityCollection("Contact")
        account = _entity(em, "Account", "a1")

        await em.get_repository("Account").find_related(account, "contacts")
        params = mapper.select_related.await_args.args[2]
        assert params.order_by == "name"

    async def test_parent_relation_uses_stored_type(self, metadata, mapper):
        seen = []

        class ContactRepository(Repository):
            def handle_select_params(self, params):
                seen.append(self.entity_type)
                return params

        em = EntityManager(
            None, metadata, mapper=mapper, repositories={"Contact": ContactRepository}
        )
        note = _entity(em, "Note", "n1", parent_id="c1", parent_type="Contact")
        await em.get_repository("Note").find_related(note, "parent")
        assert seen == ["Contact"]

    async def test_count_related_coerces_and_guards(self, mock_em, mapper):
        mapper.count_related.return_value = "4"
        repo = mock_em.get_repository("Account")
        account = _entity(mock_em, "Account", "a1")

        assert await repo.count_related(account, "contacts") == 4
        assert await repo.count_related(_entity(mock_em, "Account"), "contacts") == 0
        assert await repo.count_related(account, "projects") == 0

    async def test_is_related_for_many_relation_counts_candidate(self, mock_em, mapper):
        mapper.count_related.return_value = 1
        repo = mock_em.get_repository("Account")
        account = _entity(mock_em, "Account", "a1")

        assert await repo.is_related(account, "teams", "t1") is True
        params = mapper.count_related.await_args.args[2]
        assert params.where_clause == [{"id": "t1"}]

    async def test_is_related_rejects_unsupported_foreign(self, mock_em, mapper):
        repo = mock_em.get_repository("Account")
        account = _entity(mock_em, "Account", "a1")
        assert await repo.is_related(account, "teams", 42) is False
        assert await repo.is_related(account, "teams", True) is False
        mapper.count_related.assert_not_awaited()


class TestPivotOperations:
    async def test_update_relation_accepts_entity_or_id(self, mock_em, mapper):
        mapper.update_relation.return_value = True
        repo = mock_em.get_repository("Account")
        account = _entity(mock_em, "Account", "a1")
        team = _entity(mock_em, "Team", "t1")

        assert await repo.update_relation(account, "teams", team, {"role": "Lead"}) is True
        mapper.update_relation.assert_awaited_with(account, "teams", "t1", {"role": "Lead"})
        assert await repo.update_relation(account, "teams", "t2", {"role": "Lead"}) is True
        mapper.update_relation.assert_awaited_with(account, "teams", "t2", {"role": "Lead"})

    async def test_update_relation_misuse(self, mock_em, mapper):
        repo = mock_em.get_repository("Account")
        account = _entity(mock_em, "Account", "a1")
        assert await repo.update_relation(account, "teams", True, {}) is False
        assert await repo.update_relation(_entity(mock_em, "Account"), "teams", "t1", {}) is False
        mapper.update_relation.assert_not_awaited()

    async def test_update_relation_unsupported_data(self, mock_em, mapper):
        repo = mock_em.get_repository("Account")
        account = _entity(mock_em, "Account", "a1")
        assert await repo.update_relation(account, "teams", "t1", ["role", "Lead"]) is False
        assert await repo.update_relation(account, "teams", "t1", None) is False
        mapper.update_relation.assert_not_awaited()

    async def test_mass_relate_fires_hooks(self, hooked_em, mapper, log):
        mapper.mass_relate.return_value = False
        repo = hooked_em.get_repository("Account")
        account = _entity(hooked_em, "Account", "a1")

        await repo.mass_relate(account, "teams", {"where_clause": {"name*": "Sales%"}})
        params = mapper.mass_relate.await_args.args[2]
        assert params.where_clause == [{"name*": "Sales%"}]
        assert log.calls == ["before_mass_relate", "after_mass_relate"]

    async def test_mass_relate_without_id(self, hooked_em, mapper, log):
        repo = hooked_em.get_repository("Account")
        assert await repo.mass_relate(_entity(hooked_em, "Account"), "teams") is False
        mapper.mass_relate.assert_not_awaited()
        assert log.calls == []

    async def test_get_relation_column_delegates(self, mock_em, mapper):
        mapper.get_relation_column.return_value = "Lead"
        repo = mock_em.get_repository("Account")
        account = _entity(mock_em, "Account", "a1")
        assert await repo.get_relation_column(account, "teams", "t1", "role") == "Lead"
        mapper.get_relation_column.assert_awaited_once_with(account, "teams", "t1", "role")
