import asyncio
import re

import pytest

from crisp.config import Settings
from crisp.errors import UsageError
from crisp.persistence import SessionStore, snapshot
from crisp.plan import DeliveryResult, ScmPlatform
from crisp.registry import SessionRegistry, new_session_id
from crisp.service import ChatService
from crisp.session import CrispSession, MessageRole, SessionStatus
from tests.conftest import Collaborators, ScriptedIntake, make_requirements, make_settings


def test_session_ids_are_twelve_hex_characters() -> None:
    ids = {new_session_id() for _ in range(50)}

    assert len(ids) == 50
    assert all(re.fullmatch(r"[0-9a-f]{12}", session_id) for session_id in ids)


def test_create_and_get(settings: Settings) -> None:
    registry = SessionRegistry(settings)

    session = registry.create("alice")

    assert registry.get(session.session_id) is session
    assert session.session_id in registry
    assert len(registry) == 1
    assert registry.get("missing") is None


def test_list_orders_by_recent_activity(settings: Settings) -> None:
    registry = SessionRegistry(settings)
    first = registry.create("alice")
    second = registry.create("bob")
    third = registry.create("alice")

    first.add_message(MessageRole.USER, "still here")

    assert registry.list_all()[0] is first
    assert {s.session_id for s in registry.list_all()} == {
        first.session_id,
        second.session_id,
        third.session_id,
    }
    assert [s.owner_id for s in registry.list_by_owner("alice")] == ["alice", "alice"]
    assert registry.list_by_owner("carol") == []


@pytest.mark.asyncio
async def test_remove_closes_stream(settings: Settings) -> None:
    registry = SessionRegistry(settings)
    session = registry.create("alice")
    subscription = session.events.subscribe()

    assert await registry.remove(session.session_id) is True
    assert await registry.remove(session.session_id) is False
    assert registry.get(session.session_id) is None
    assert [event async for event in subscription] == []


@pytest.mark.asyncio
async def test_flush_without_store_is_a_no_op(settings: Settings) -> None:
    registry = SessionRegistry(settings)
    registry.create("alice")

    assert await registry.flush() == 0


@pytest.mark.asyncio
async def test_mutations_mark_sessions_dirty(settings: Settings, store: SessionStore) -> None:
    registry = SessionRegistry(settings, store)
    session = registry.create("alice")

    assert await registry.flush() == 1
    assert registry.dirty_count == 0

    session.add_message(MessageRole.USER, "hello")
    assert registry.dirty_count == 1
    assert await registry.flush() == 1

    persisted = await store.get(session.session_id)
    assert persisted is not None
    assert [m.content for m in persisted.messages] == ["hello"]


@pytest.mark.asyncio
async def test_failed_flush_keeps_sessions_dirty(settings: Settings, store: SessionStore) -> None:
    registry = SessionRegistry(settings, store)
    registry.create("alice")

    async def broken(items) -> int:
        raise RuntimeError("database unavailable")

    store.save_many = broken

    with pytest.raises(RuntimeError):
        await registry.flush()
    assert registry.dirty_count == 1


@pytest.mark.asyncio
async def test_load_restores_persisted_sessions(settings: Settings, store: SessionStore) -> None:
    original = SessionRegistry(settings, store)
    session = original.create("alice")
    session.add_message(MessageRole.USER, "create widgets")
    session.transition(SessionStatus.PLANNING)
    session.transition(SessionStatus.FAILED)
    await original.flush()

    restored = SessionRegistry(settings, store)
    assert await restored.load() == 1
    assert await restored.load() == 0

    copy = restored.get(session.session_id)
    assert copy is not None
    assert copy.status == SessionStatus.FAILED
    assert copy.owner_id == "alice"
    assert [m.content for m in copy.messages] == ["create widgets"]
    assert copy.current_plan is None

    copy.touch()
    assert restored.dirty_count == 1


@pytest.mark.asyncio
async def test_restored_delivery_result_keeps_both_links(store: SessionStore) -> None:
    session = CrispSession(
        "abc123def456",
        "alice",
        status=SessionStatus.COMPLETED,
        delivery_result=DeliveryResult.succeeded(
            ScmPlatform.GITHUB,
            "main",
            "https://github.com/acme/widgets",
            "https://github.com/acme/widgets.git",
        ),
    )
    await store.save(snapshot(session))

    restored = SessionRegistry(make_settings(), store)
    await restored.load()
    result = restored.get(session.session_id).delivery_result

    assert result.vscode_web_url == "https://vscode.dev/github/acme/widgets"
    assert result.vscode_clone_url.startswith("vscode://vscode.git/clone?url=")


@pytest.mark.asyncio
async def test_autosave_flushes_in_background(store: SessionStore) -> None:
    registry = SessionRegistry(make_settings(session_autosave_seconds=0.01), store)
    session = registry.create("alice")

    registry.start_autosave()
    for _ in range(100):
        if registry.dirty_count == 0:
            break
        await asyncio.sleep(0.01)
    session.add_message(MessageRole.USER, "hello")
    await registry.close()

    persisted = await store.get(session.session_id)
    assert persisted is not None
    assert [m.content for m in persisted.messages] == ["hello"]


@pytest.mark.asyncio
async def test_sessions_interrupted_by_restart_can_move_on(
    collaborators: Collaborators, store: SessionStore
) -> None:
    executing = CrispSession("aaaaaaaaaaaa", "alice", status=SessionStatus.EXECUTING)
    waiting = CrispSession("bbbbbbbbbbbb", "alice", status=SessionStatus.AWAITING_APPROVAL)
    await store.save_many([snapshot(executing), snapshot(waiting)])

    registry = SessionRegistry(collaborators.settings, store)
    assert await registry.load() == 2
    assert registry.dirty_count == 2
    service = ChatService(
        registry, ScriptedIntake(make_requirements()), lambda session: collaborators.orchestrator()
    )

    assert registry.get("aaaaaaaaaaaa").status == SessionStatus.FAILED
    with pytest.raises(UsageError, match="start a new session"):
        await service.post_message("aaaaaaaaaaaa", "are we done?")

    await service.post_message("bbbbbbbbbbbb", "Please create a widget service")
    assert registry.get("bbbbbbbbbbbb").status == SessionStatus.AWAITING_APPROVAL
    await service.handle_approval("bbbbbbbbbbbb", approved=True)
    assert registry.get("bbbbbbbbbbbb").status == SessionStatus.COMPLETED

    await registry.flush()
    assert (await store.get("aaaaaaaaaaaa")).status == "failed"
