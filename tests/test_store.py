"""Tests for the per-agent session store."""

from __future__ import annotations

import pytest

from a2a_dashboard.auth import BearerAuth, NoAuth
from a2a_dashboard.card import parse_agent_card
from a2a_dashboard.exceptions import UnsupportedMethodError
from a2a_dashboard.store import AgentSessionStore, StoreEvent
from a2a_dashboard.types import AgentCard, ChatMessage, RpcLogEntry

from .conftest import make_card_payload


def _card(agent_id: str, **overrides) -> AgentCard:
    return parse_agent_card(make_card_payload(id=agent_id, **overrides))


def _message(message_id: str, content: str = "hi", role: str = "user") -> ChatMessage:
    return ChatMessage(
        id=message_id, role=role, content=content, timestamp="2025-01-01T10:00:00+00:00"
    )


def _log(log_id: str) -> RpcLogEntry:
    return RpcLogEntry(
        id=log_id,
        endpoint_url="https://agent.example/rpc",
        request_payload={"method": "message/send"},
        started_at="2025-01-01T10:00:00+00:00",
    )


class TestRegistration:
    def test_initial_agents_and_selection(self):
        store = AgentSessionStore([_card("a"), _card("b")], auth={"b": BearerAuth("t")})

        assert [c.id for c in store.agents] == ["a", "b"]
        assert store.selected_agent_id == "a"
        assert store.auth("b") == BearerAuth("t")
        assert store.auth("a") == NoAuth()

    def test_register_seeds_endpoint_and_method(self):
        store = AgentSessionStore()
        card = store.register(_card("a"))

        state = store.get("a")
        assert state.endpoint == card.endpoints[0].url
        assert state.method == "message/send"
        assert store.selected_agent is card

    def test_register_puts_card_first(self):
        store = AgentSessionStore([_card("a"), _card("b")])
        store.register(_card("c"), select=False)

        assert [c.id for c in store.agents] == ["c", "a", "b"]
        assert store.selected_agent_id == "a"

    def test_reregister_replaces_card_and_keeps_state(self):
        store = AgentSessionStore([_card("a"), _card("b")])
        store.append_message("b", _message("m1"))
        store.set_method("b", "message/stream")
        store.set_endpoint("b", "https://custom.example/rpc")

        store.register(_card("b", name="Renamed"))

        assert [c.id for c in store.agents] == ["b", "a"]
        assert store.get_card("b").name == "Renamed"
        assert len(store.messages("b")) == 1
        assert store.method("b") == "message/stream"
        assert store.resolve_endpoint("b") == "https://custom.example/rpc"

    def test_snapshot_agents(self):
        store = AgentSessionStore([_card("a")])
        snapshot = store.snapshot_agents()

        assert snapshot[0]["id"] == "a"
        assert "protocolVersion" in snapshot[0]

    def test_select_unknown_agent(self):
        store = AgentSessionStore([_card("a")])
        with pytest.raises(KeyError):
            store.select("missing")


class TestRemove:
    def test_remove_clears_everything(self):
        store = AgentSessionStore([_card("a"), _card("b")])
        store.append_message("a", _message("m1"))
        store.append_log("a", _log("l1"))
        store.set_endpoint_override("a", "https://o.example")
        store.set_method("a", "message/stream")
        store.set_context_id("a", "ctx")
        store.set_active_task("a", "t1")
        store.upsert_tracked_task("a", "t1", "working")
        store.set_auth("a", BearerAuth("secret"))
        store.append_message("b", _message("m2"))

        assert store.remove("a")

        assert store.get("a") is None
        assert "a" not in store
        assert store.messages("a") == []
        assert store.logs("a") == []
        assert store.tracked_tasks("a") == []
        assert store.context_id("a") is None
        assert store.active_task_id("a") is None
        assert store.resolve_endpoint("a") is None
        assert store.auth("a") == NoAuth()
        assert store.selected_agent_id is None
        assert [m.id for m in store.messages("b")] == ["m2"]

    def test_remove_unselected_keeps_selection(self):
        store = AgentSessionStore([_card("a"), _card("b")])
        store.remove("b")
        assert store.selected_agent_id == "a"
        assert not store.remove("b")

    def test_writes_for_removed_agent_are_dropped(self):
        store = AgentSessionStore([_card("a")])
        store.remove("a")

        store.append_message("a", _message("late"))
        store.set_context_id("a", "ctx")
        assert store.upsert_tracked_task("a", "t1", "completed") is None
        assert store.get("a") is None


class TestMessagesAndLogs:
    def test_patch_and_remove_message(self, store):
        agent_id = store.selected_agent_id
        store.append_message(agent_id, _message("m1"))

        patched = store.patch_message(agent_id, "m1", content="edited", status="error")

        assert patched.content == "edited"
        assert store.messages(agent_id)[0].status == "error"
        assert store.patch_message(agent_id, "nope", content="x") is None
        assert store.remove_message(agent_id, "m1")
        assert store.messages(agent_id) == []

    def test_accessors_return_copies(self, store):
        agent_id = store.selected_agent_id
        store.messages(agent_id).append(_message("sneaky"))
        assert store.messages(agent_id) == []

    def test_complete_log_updates_existing_once(self, store):
        agent_id = store.selected_agent_id
        store.append_log(agent_id, _log("l1"))

        first = store.complete_log(
            agent_id, "l1", response_payload={"ok": 1}, status=200, duration_ms=5
        )
        second = store.complete_log(agent_id, "l1", response_payload={"ok": 2})

        logs = store.logs(agent_id)
        assert len(logs) == 1
        assert first.response_payload == {"ok": 1}
        assert second.response_payload == {"ok": 1}
        assert logs[0].completed
        assert logs[0].duration_ms == 5

    def test_complete_log_inserts_fallback_when_missing(self, store):
        agent_id = store.selected_agent_id

        store.complete_log(
            agent_id,
            "l9",
            response_payload={"error": "boom"},
            fallback=_log("l9"),
        )

        logs = store.logs(agent_id)
        assert [log.id for log in logs] == ["l9"]
        assert logs[0].response_payload == {"error": "boom"}
        assert logs[0].completed_at is not None


class TestConversationState:
    def test_tracked_task_keeps_created_at(self, store):
        agent_id = store.selected_agent_id
        first = store.upsert_tracked_task(agent_id, "t1", "submitted")
        second = store.upsert_tracked_task(
            agent_id, "t1", "working", context_id="ctx", message="busy"
        )

        assert second.created_at == first.created_at
        assert second.state == "working"
        assert second.message == "busy"
        assert len(store.tracked_tasks(agent_id)) == 1

    def test_context_id_set_and_cleared(self, store):
        agent_id = store.selected_agent_id
        store.set_context_id(agent_id, "ctx-1")
        assert store.context_id(agent_id) == "ctx-1"

        store.clear_context_id(agent_id)
        assert store.context_id(agent_id) is None

    def test_update_without_context_keeps_it(self, store):
        agent_id = store.selected_agent_id
        store.upsert_tracked_task(agent_id, "t1", "submitted", context_id="ctx")
        updated = store.upsert_tracked_task(agent_id, "t1", "working")

        assert updated.context_id == "ctx"

    def test_new_tracked_tasks_at_head(self, store):
        agent_id = store.selected_agent_id
        store.upsert_tracked_task(agent_id, "t1", "completed")
        store.upsert_tracked_task(agent_id, "t2", "working")
        store.upsert_tracked_task(agent_id, "t1", "completed")

        assert [t.task_id for t in store.tracked_tasks(agent_id)] == ["t2", "t1"]

    def test_clear_conversation(self, store):
        agent_id = store.selected_agent_id
        store.append_message(agent_id, _message("m1"))
        store.append_log(agent_id, _log("l1"))
        store.set_context_id(agent_id, "ctx")
        store.set_active_task(agent_id, "t1")
        store.upsert_tracked_task(agent_id, "t1", "input-required")
        store.set_auth(agent_id, BearerAuth("keep"))
        store.set_endpoint_override(agent_id, "https://o.example")

        store.clear_conversation(agent_id)

        assert store.messages(agent_id) == []
        assert store.context_id(agent_id) is None
        assert store.active_task_id(agent_id) is None
        assert len(store.tracked_tasks(agent_id)) == 1
        assert len(store.logs(agent_id)) == 1
        assert store.auth(agent_id) == BearerAuth("keep")
        assert store.resolve_endpoint(agent_id) == "https://o.example"


class TestConfiguration:
    def test_resolve_endpoint_precedence(self, store):
        agent_id = store.selected_agent_id
        first = store.get_card(agent_id).endpoints[0].url

        assert store.resolve_endpoint(agent_id) == first
        store.set_endpoint(agent_id, "https://chosen.example")
        assert store.resolve_endpoint(agent_id) == "https://chosen.example"
        store.set_endpoint_override(agent_id, "  https://typed.example  ")
        assert store.resolve_endpoint(agent_id) == "https://typed.example"
        store.set_endpoint_override(agent_id, "   ")
        store.set_endpoint(agent_id, None)
        assert store.resolve_endpoint(agent_id) == first

    def test_set_method_validates(self, store):
        with pytest.raises(UnsupportedMethodError):
            store.set_method(store.selected_agent_id, "tasks/cancel")

    def test_chat_error_is_per_agent(self):
        store = AgentSessionStore([_card("a"), _card("b")])
        store.set_chat_error("a", "boom")

        assert store.chat_error("a") == "boom"
        assert store.chat_error("b") is None


class TestEvents:
    def test_listeners_receive_events(self, store):
        events: list[StoreEvent] = []
        unsubscribe = store.subscribe(events.append)
        agent_id = store.selected_agent_id

        store.append_message(agent_id, _message("m1"))
        store.set_sending(agent_id, True)
        unsubscribe()
        store.set_sending(agent_id, False)

        assert events == [
            StoreEvent("messages", agent_id),
            StoreEvent("sending", agent_id),
        ]

    def test_failing_listener_does_not_break_store(self, store):
        def broken(event: StoreEvent) -> None:
            raise RuntimeError("listener bug")

        store.subscribe(broken)
        store.append_message(store.selected_agent_id, _message("m1"))

        assert len(store.messages(store.selected_agent_id)) == 1
