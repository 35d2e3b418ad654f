"""Tests for the auto-selection / auto-provisioning policy."""

from __future__ import annotations

import asyncio

import pytest

from sandboxchat.client_state.errors import TransportError
from sandboxchat.client_state.models.enums import AutoCreateState, RegistryStatus
from sandboxchat.client_state.policy import (
    NO_ACTION,
    Action,
    AutoProvisioner,
    DefaultRepository,
    decide,
    fixed_default_repository,
    no_default_repository,
)
from sandboxchat.client_state.registry import WorkspaceRegistry
from tests.fakes import FakeProvisioning, drain, make_workspace

DEFAULT = fixed_default_repository("https://github.com/acme/boilerplate")

# ---------------------------------------------------------------------------
# decide
# ---------------------------------------------------------------------------


def test_nothing_happens_while_a_workspace_is_active() -> None:
    decision = decide(
        [make_workspace("sbx-1")],
        "sbx-1",
        list_status=RegistryStatus.LOADED,
        auto_create=AutoCreateState.NOT_ATTEMPTED,
        default_repository=DEFAULT,
    )
    assert decision == NO_ACTION


@pytest.mark.parametrize("status", [RegistryStatus.UNKNOWN, RegistryStatus.LOADING, RegistryStatus.ERROR])
def test_nothing_happens_until_the_list_is_known(status: RegistryStatus) -> None:
    decision = decide(
        [],
        None,
        list_status=status,
        auto_create=AutoCreateState.NOT_ATTEMPTED,
        default_repository=DEFAULT,
    )
    assert decision == NO_ACTION


def test_local_workspace_is_preferred() -> None:
    decision = decide(
        [make_workspace("sbx-1"), make_workspace("local")],
        None,
        list_status=RegistryStatus.LOADED,
        auto_create=AutoCreateState.NOT_ATTEMPTED,
    )
    assert decision.action == Action.SELECT
    assert decision.workspace_id == "local"


def test_first_listed_workspace_is_selected_otherwise() -> None:
    decision = decide(
        [make_workspace("sbx-2"), make_workspace("sbx-1")],
        None,
        list_status=RegistryStatus.LOADED,
        auto_create=AutoCreateState.NOT_ATTEMPTED,
    )
    assert decision.workspace_id == "sbx-2"


def test_custom_local_workspace_id() -> None:
    decision = decide(
        [make_workspace("sbx-1"), make_workspace("dev")],
        None,
        list_status=RegistryStatus.LOADED,
        auto_create=AutoCreateState.NOT_ATTEMPTED,
        local_workspace_id="dev",
    )
    assert decision.workspace_id == "dev"


def test_empty_list_creates_default_repository() -> None:
    decision = decide(
        [],
        None,
        list_status=RegistryStatus.LOADED,
        auto_create=AutoCreateState.NOT_ATTEMPTED,
        default_repository=DEFAULT,
    )
    assert decision.action == Action.CREATE
    assert decision.repository == DefaultRepository("https://github.com/acme/boilerplate", "main")


@pytest.mark.parametrize("state", [AutoCreateState.PENDING, AutoCreateState.SUCCEEDED])
def test_auto_create_fires_at_most_once(state: AutoCreateState) -> None:
    decision = decide(
        [],
        None,
        list_status=RegistryStatus.LOADED,
        auto_create=state,
        default_repository=DEFAULT,
    )
    assert decision == NO_ACTION


def test_no_default_repository_never_creates() -> None:
    decision = decide(
        [],
        None,
        list_status=RegistryStatus.LOADED,
        auto_create=AutoCreateState.NOT_ATTEMPTED,
        default_repository=no_default_repository,
    )
    assert decision == NO_ACTION


# ---------------------------------------------------------------------------
# AutoProvisioner
# ---------------------------------------------------------------------------


@pytest.fixture
def registry(provisioning: FakeProvisioning) -> WorkspaceRegistry:
    return WorkspaceRegistry(provisioning)


@pytest.fixture
def provisioner(registry: WorkspaceRegistry) -> AutoProvisioner:
    return AutoProvisioner(registry, DEFAULT)


async def test_selects_existing_workspace(
    provisioning: FakeProvisioning,
    registry: WorkspaceRegistry,
    provisioner: AutoProvisioner,
) -> None:
    provisioning.workspaces = [make_workspace("sbx-1")]
    await registry.refresh()

    decision = provisioner.evaluate()

    assert decision.action == Action.SELECT
    assert registry.active_id == "sbx-1"
    assert provisioning.create_calls == []


async def test_concurrent_evaluations_create_exactly_once(
    provisioning: FakeProvisioning,
    registry: WorkspaceRegistry,
    provisioner: AutoProvisioner,
) -> None:
    await registry.refresh()
    provisioning.create_gate = asyncio.Event()

    decisions = [provisioner.evaluate() for _ in range(3)]
    await drain()

    assert [d.action for d in decisions] == [Action.CREATE, Action.NONE, Action.NONE]
    assert provisioner.state == AutoCreateState.PENDING
    assert provisioner.busy
    assert len(provisioning.create_calls) == 1

    provisioning.create_gate.set()
    workspace = await provisioner.wait()

    assert provisioner.state == AutoCreateState.SUCCEEDED
    assert registry.active_id == workspace.id
    assert provisioning.create_calls[0].repo_url == "https://github.com/acme/boilerplate"


async def test_no_second_create_after_success(
    provisioning: FakeProvisioning,
    registry: WorkspaceRegistry,
    provisioner: AutoProvisioner,
) -> None:
    await registry.refresh()
    provisioner.evaluate()
    await provisioner.wait()

    provisioning.workspaces = []
    await registry.refresh()
    assert registry.active_id is None

    assert provisioner.evaluate() == NO_ACTION
    assert len(provisioning.create_calls) == 1


async def test_failed_list_never_triggers_create(
    provisioning: FakeProvisioning,
    registry: WorkspaceRegistry,
    provisioner: AutoProvisioner,
) -> None:
    provisioning.fail_list = True
    with pytest.raises(TransportError):
        await registry.refresh()

    assert provisioner.evaluate() == NO_ACTION
    await drain()
    assert provisioning.create_calls == []
    assert provisioner.state == AutoCreateState.NOT_ATTEMPTED


async def test_failed_create_allows_retry(
    provisioning: FakeProvisioning,
    registry: WorkspaceRegistry,
    provisioner: AutoProvisioner,
) -> None:
    await registry.refresh()
    provisioning.fail_create = True

    provisioner.evaluate()
    assert await provisioner.wait() is None

    assert provisioner.state == AutoCreateState.NOT_ATTEMPTED
    assert provisioner.last_error is not None
    assert registry.active_id is None

    provisioning.fail_create = False
    provisioner.evaluate()
    await provisioner.wait()
    assert provisioner.state == AutoCreateState.SUCCEEDED


async def test_auto_created_workspace_not_selected_if_user_chose_another(
    provisioning: FakeProvisioning,
    registry: WorkspaceRegistry,
    provisioner: AutoProvisioner,
) -> None:
    await registry.refresh()
    provisioning.create_gate = asyncio.Event()
    provisioner.evaluate()
    await drain()

    # The user creates and picks their own workspace meanwhile.
    provisioning.create_gate.set()
    mine = await registry.create("https://github.com/acme/widgets")
    registry.select(mine.id)
    auto = await provisioner.wait()

    assert auto is not None
    assert registry.active_id == mine.id
