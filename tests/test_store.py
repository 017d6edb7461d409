"""Tests for the module state store and its claim protocol."""

import pytest

from medic.core.errors import ModuleBusyError, ModuleNotFoundError
from medic.models.module import ModuleStatus
from medic.modules.catalogue import ModuleRegistry
from medic.state.store import ModuleStateStore


@pytest.fixture
def store(registry: ModuleRegistry) -> ModuleStateStore:
    return ModuleStateStore(registry)


class TestInitialState:
    def test_every_module_starts_unknown(self, store: ModuleStateStore) -> None:
        states = store.all()
        assert len(states) == 11
        assert all(s.status == ModuleStatus.UNKNOWN for s in states)
        assert all(s.health_score == 0 for s in states)

    def test_carries_descriptor_layout(self, store: ModuleStateStore) -> None:
        state = store.get("premium")
        assert state.layer == 2
        assert state.workspace_dependencies == ["auth", "analytics"]

    def test_unknown_module(self, store: ModuleStateStore) -> None:
        with pytest.raises(ModuleNotFoundError):
            store.get("billing")


class TestClaims:
    """Tests for claim/release ownership of modules."""

    def test_claim_marks_recovering(self, store: ModuleStateStore) -> None:
        assert store.claim("auth", "exec-1") is True
        state = store.get("auth")
        assert state.status == ModuleStatus.RECOVERING
        assert state.active_execution_id == "exec-1"
        assert state.modified_by == "exec-1"
        assert store.owner_of("auth") == "exec-1"

    def test_reclaim_by_owner_is_noop(self, store: ModuleStateStore) -> None:
        store.claim("auth", "exec-1")
        assert store.claim("auth", "exec-1") is False

    def test_claim_by_other_execution_rejected(self, store: ModuleStateStore) -> None:
        store.claim("auth", "exec-1")
        with pytest.raises(ModuleBusyError) as exc_info:
            store.claim("auth", "exec-2")
        assert exc_info.value.details["owner_execution_id"] == "exec-1"
        assert exc_info.value.details["requested_execution_id"] == "exec-2"

    def test_claim_many_is_all_or_nothing(self, store: ModuleStateStore) -> None:
        store.claim("i18n", "exec-1")
        with pytest.raises(ModuleBusyError):
            store.claim_many(["auth", "i18n", "analytics"], "exec-2")
        assert store.owner_of("auth") is None
        assert store.owner_of("analytics") is None

    def test_claim_many_returns_newly_claimed(self, store: ModuleStateStore) -> None:
        store.claim("auth", "exec-1")
        assert store.claim_many(["auth", "i18n", "i18n"], "exec-1") == ["i18n"]

    def test_release_rederives_status_from_score(self, store: ModuleStateStore) -> None:
        store.put(store.get("auth").model_copy(update={"health_score": 95}))
        store.claim("auth", "exec-1")
        assert store.release("auth", "exec-1") is True
        state = store.get("auth")
        assert state.status == ModuleStatus.HEALTHY
        assert state.active_execution_id is None

    def test_release_by_non_owner_is_ignored(self, store: ModuleStateStore) -> None:
        store.claim("auth", "exec-1")
        assert store.release("auth", "exec-2") is False
        assert store.owner_of("auth") == "exec-1"

    def test_release_all(self, store: ModuleStateStore) -> None:
        store.claim_many(["auth", "i18n"], "exec-1")
        store.claim("analytics", "exec-2")
        assert sorted(store.release_all("exec-1")) == ["auth", "i18n"]
        assert store.owner_of("analytics") == "exec-2"

    def test_put_keeps_ownership_while_claimed(self, store: ModuleStateStore) -> None:
        store.claim("auth", "exec-1")
        store.put(
            store.get("auth").model_copy(
                update={"status": ModuleStatus.HEALTHY, "active_execution_id": None}
            )
        )
        assert store.get("auth").status == ModuleStatus.RECOVERING
        assert store.owner_of("auth") == "exec-1"


class TestOperatorUpdates:
    def test_update_status_and_notes(self, store: ModuleStateStore) -> None:
        state = store.update_operator_fields(
            "auth", status=ModuleStatus.WARNING, notes="flaky login tests"
        )
        assert state.status == ModuleStatus.WARNING
        assert state.notes == "flaky login tests"
        assert state.modified_by == "operator"

    def test_update_notes_only_keeps_status(self, store: ModuleStateStore) -> None:
        store.update_operator_fields("auth", status=ModuleStatus.CRITICAL)
        state = store.update_operator_fields("auth", notes="looking into it")
        assert state.status == ModuleStatus.CRITICAL

    def test_update_rejected_while_recovering(self, store: ModuleStateStore) -> None:
        store.claim("auth", "exec-1")
        with pytest.raises(ModuleBusyError):
            store.update_operator_fields("auth", notes="hands off")
