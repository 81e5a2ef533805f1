"""
Approval chat command tests - parsing, execution and message formatting.
"""

import pytest
from datetime import timedelta
from unittest.mock import patch

from reddog.core.bridge import DATA_APPROVAL_RESULT, InMemoryBridge
from reddog.core.commands import (
    ApprovalCommand, ApprovalCommands, format_bytes, parse_command, time_until_expiry
)
from reddog.core.errors import AlreadyProcessed, NotFound, PayloadStoreError
from reddog.core.schema import ApprovalStatus, DatasetEvent

from conftest import dataset_body


@pytest.fixture
def bridge():
    return InMemoryBridge()


@pytest.fixture
def commands(registry, payload_store, bridge, clock):
    return ApprovalCommands(registry, payload_store, bridge, clock=clock)


@pytest.fixture
def approval_id(registry):
    return registry.enqueue(DatasetEvent.from_message(dataset_body())).approval_id


class TestParseCommand:

    def test_approve(self):
        assert parse_command("approve approval-abc123") == ApprovalCommand("approve", "approval-abc123")

    def test_lick_of_approval(self):
        command = parse_command("Give Lick of Approval approval-abc123")
        assert command.action == "approve"
        assert command.approval_id == "approval-abc123"
        assert command.used_lick

    def test_deny_with_reason(self):
        command = parse_command("deny approval-abc123 duplicate upload")
        assert command.action == "deny"
        assert command.reason == "duplicate upload"

    def test_deny_without_reason(self):
        assert parse_command("deny approval-abc123").reason == "No reason provided"

    @pytest.mark.parametrize("text", ["list approvals", "show approvals", "pending approvals", "pending approval"])
    def test_list(self, text):
        assert parse_command(text).action == "list"

    def test_retry(self):
        command = parse_command("retry approval approval-abc123")
        assert command.action == "retry"
        assert command.approval_id == "approval-abc123"

    def test_show(self):
        command = parse_command("show approval approval-abc123")
        assert command.action == "show"
        assert command.approval_id == "approval-abc123"

    @pytest.mark.parametrize("text", ["", "hello red dog", "approve", "approve two ids", None])
    def test_not_a_command(self, text):
        assert parse_command(text) is None


class TestExecute:

    def test_approve_stores_and_acknowledges(self, commands, bridge, payload_store, approval_id):
        result = commands.handle(f"approve {approval_id}", actor="alice")

        assert result.success
        assert "Approved and stored provider data" in result.message
        assert "**Approved by:** alice" in result.message
        stored = payload_store.read(result.data["location"])
        assert stored["data"] == dataset_body()["payload"]

        acks = bridge.messages(DATA_APPROVAL_RESULT)
        assert acks == [{
            "approvalId": approval_id,
            "requestId": "req-001",
            "status": "approved",
            "location": result.data["location"],
            "approvedBy": "alice",
        }]

    def test_lick_header(self, commands, approval_id):
        result = commands.handle(f"give lick of approval {approval_id}", actor="alice")
        assert result.message.startswith("🐕👅 Red Dog gives the Lick of Approval!")

    def test_deny_acknowledges(self, commands, bridge, approval_id):
        result = commands.handle(f"deny {approval_id} wrong farm", actor="bob")

        assert result.success
        assert "**Reason:** wrong farm" in result.message
        ack = bridge.messages(DATA_APPROVAL_RESULT)[0]
        assert ack["status"] == "denied"
        assert ack["requestId"] == "req-001"
        assert ack["reason"] == "wrong farm"

    def test_repeat_approve_reports_failure(self, commands, bridge, approval_id):
        commands.handle(f"approve {approval_id}", actor="alice")
        result = commands.handle(f"approve {approval_id}", actor="alice")

        assert not result.success
        assert result.message == "❌ Failed to approve: Approval already processed: approved"
        assert result.data["error"]["error_type"] == "ALREADY_PROCESSED"
        assert len(bridge.messages(DATA_APPROVAL_RESULT)) == 1

    def test_unknown_id(self, commands):
        result = commands.handle("deny approval-nope")
        assert not result.success
        assert "not found" in result.message

    def test_list_pending(self, commands, approval_id):
        result = commands.handle("list approvals")

        assert result.success
        assert "Pending Approvals (1)" in result.message
        assert "Records: 3" in result.message
        assert "Expires: 24h 0m" in result.message
        assert result.data["pending"][0]["approval_id"] == approval_id
        assert "payload" not in result.data["pending"][0]

    def test_list_empty(self, commands):
        result = commands.handle("pending approvals")
        assert result.message == "No pending approvals"

    def test_show(self, commands, approval_id):
        result = commands.handle(f"show approval {approval_id}")

        assert result.success
        assert f"**ID:** {approval_id}" in result.message
        assert "**Authenticated User:** farmer@example.com" in result.message
        assert "give lick of approval" in result.message

    def test_show_unknown(self, commands):
        result = commands.handle("show approval approval-nope")
        assert not result.success

    def test_non_command_returns_none(self, commands):
        assert commands.handle("what's the weather on the north paddock?") is None


class TestStoreFailures:
    """An approved payload survives a failed write until it is stored."""

    def test_failed_write_holds_payload(self, commands, registry, bridge, payload_store, approval_id):
        with patch.object(payload_store, "write", side_effect=OSError("disk full")):
            with pytest.raises(PayloadStoreError) as exc_info:
                commands.approve_and_store(approval_id, "alice")

        assert exc_info.value.details == {"approval_id": approval_id, "status": "approved", "stored": False}
        assert registry.get(approval_id).status is ApprovalStatus.APPROVED
        assert bridge.messages(DATA_APPROVAL_RESULT) == []

        held = commands.unstored()
        assert [a.approval_id for a in held] == [approval_id]
        assert held[0].payload == dataset_body()["payload"]

    def test_retry_stores_and_acknowledges(self, commands, bridge, payload_store, approval_id):
        with patch.object(payload_store, "write", side_effect=OSError("disk full")):
            with pytest.raises(PayloadStoreError):
                commands.approve_and_store(approval_id, "alice")

        approved, stored = commands.retry_store(approval_id)

        assert payload_store.read(stored.location)["data"] == dataset_body()["payload"]
        assert approved.approved_by == "alice"
        assert commands.unstored() == []
        assert bridge.messages(DATA_APPROVAL_RESULT)[0]["location"] == stored.location

    def test_retry_that_fails_again_keeps_holding(self, commands, payload_store, approval_id):
        with patch.object(payload_store, "write", side_effect=OSError("disk full")):
            with pytest.raises(PayloadStoreError):
                commands.approve_and_store(approval_id, "alice")
            with pytest.raises(PayloadStoreError):
                commands.retry_store(approval_id)

        assert len(commands.unstored()) == 1

    def test_repeat_approve_still_already_processed(self, commands, payload_store, approval_id):
        with patch.object(payload_store, "write", side_effect=OSError("disk full")):
            with pytest.raises(PayloadStoreError):
                commands.approve_and_store(approval_id, "alice")

        with pytest.raises(AlreadyProcessed):
            commands.approve_and_store(approval_id, "alice")
        assert len(commands.unstored()) == 1

    def test_retry_without_held_payload(self, commands, approval_id):
        with pytest.raises(NotFound):
            commands.retry_store(approval_id)

    def test_chat_approve_reports_held_payload(self, commands, payload_store, approval_id):
        with patch.object(payload_store, "write", side_effect=OSError("disk full")):
            result = commands.handle(f"approve {approval_id}", actor="alice")

        assert not result.success
        assert f"retry approval {approval_id}" in result.message
        assert result.data["error"]["error_type"] == "PAYLOAD_STORE_FAILED"

        retried = commands.handle(f"retry approval {approval_id}", actor="alice")
        assert retried.success
        assert "Stored approved provider data" in retried.message

    def test_chat_approve_unexpected_error_returns_failure(self, commands, registry, approval_id):
        with patch.object(registry, "approve", side_effect=RuntimeError("boom")):
            result = commands.handle(f"approve {approval_id}", actor="alice")

        assert not result.success
        assert result.message == "❌ Failed to approve: boom"


class TestFormatting:

    @pytest.mark.parametrize("size,expected", [
        (512, "512 B"),
        (2048, "2.0 KB"),
        (5 * 1024 * 1024, "5.0 MB"),
    ])
    def test_format_bytes(self, size, expected):
        assert format_bytes(size) == expected

    def test_time_until_expiry(self, clock):
        now = clock.now
        assert time_until_expiry(now + timedelta(hours=49), now) == "2 days"
        assert time_until_expiry(now + timedelta(hours=3, minutes=15), now) == "3h 15m"
        assert time_until_expiry(now + timedelta(minutes=42), now) == "42m"
        assert time_until_expiry(now - timedelta(seconds=1), now) == "Expired"
