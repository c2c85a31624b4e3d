"""
Priority queue tests: join, status and leave.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from database.errors import ValidationError
from database.models import QueueTicket, TicketStatus
from database.queue_service import (
    QueueService,
    MSG_ADDED,
    MSG_PRIORITY,
    MSG_ALREADY_QUEUED,
)
from database.repositories import EntityNotFoundError

from conftest import make_whitelist


@pytest.fixture
def queue(session, config):
    return QueueService(session, config)


class TestJoin:
    """Tests for joining a sale queue."""

    def test_first_join_gets_position_one(self, queue, project):
        result = queue.join("0xAAA", project.id)

        assert result["position"] == 1
        assert result["priority"] is False
        assert result["eta_seconds"] == 30
        assert result["message"] == MSG_ADDED
        uuid.UUID(result["ticket_id"])

    def test_nth_join_position(self, queue, project):
        for i in range(4):
            queue.join(f"0x{i:040x}", project.id)

        result = queue.join("0xlast", project.id)
        assert result["position"] == 5
        assert result["eta_seconds"] == 5 * 30
        assert queue.status(uuid.UUID(result["ticket_id"]))["position"] == 5

    def test_join_is_idempotent(self, queue, session, project):
        first = queue.join("0xAbC", project.id)
        queue.join("0xother", project.id)
        second = queue.join("0xABC", project.id)

        assert second["ticket_id"] == first["ticket_id"]
        assert second["position"] == 1
        assert second["message"] == MSG_ALREADY_QUEUED
        assert session.query(QueueTicket).filter_by(wallet_address="0xabc").count() == 1

    def test_whitelisted_wallet_gets_priority(self, queue, session, project):
        make_whitelist(session, "0xVIP", project.id)
        result = queue.join("0xvip", project.id)

        assert result["priority"] is True
        assert result["message"] == MSG_PRIORITY

    def test_whitelist_is_per_project(self, queue, session, project):
        make_whitelist(session, "0xvip", uuid.uuid4())
        assert queue.join("0xvip", project.id)["priority"] is False

    def test_expiry_uses_configured_ttl(self, queue, project):
        before = datetime.now(timezone.utc)
        result = queue.join("0xttl", project.id)
        expires_at = datetime.fromisoformat(result["expires_at"])

        assert before + timedelta(minutes=14) < expires_at <= before + timedelta(minutes=16)

    def test_queues_are_separate_per_project(self, queue, project):
        queue.join("0x1", project.id)
        other = queue.join("0x1", uuid.uuid4())
        assert other["position"] == 1
        assert other["message"] == MSG_ADDED

    def test_missing_identifiers(self, queue, project):
        with pytest.raises(ValidationError, match="Wallet address and project ID required"):
            queue.join("", project.id)
        with pytest.raises(ValidationError):
            queue.join("0x1", None)

    def test_concurrent_duplicate_returns_winner(self, queue, session, project, monkeypatch):
        winner = queue.join("0xrace", project.id)

        # Simulate losing the race: the existence check misses the winner's row
        calls = []
        original = queue.tickets.get_waiting

        def get_waiting(wallet, project_id):
            calls.append(wallet)
            if len(calls) == 1:
                return None
            return original(wallet, project_id)

        monkeypatch.setattr(queue.tickets, "get_waiting", get_waiting)
        result = queue.join("0xrace", project.id)

        assert result["ticket_id"] == winner["ticket_id"]
        assert result["message"] == MSG_ALREADY_QUEUED
        assert session.query(QueueTicket).filter_by(wallet_address="0xrace").count() == 1


class TestStatus:
    """Tests for ticket status."""

    def test_status_of_waiting_ticket(self, queue, project):
        queue.join("0x1", project.id)
        ticket = queue.join("0x2", project.id)

        result = queue.status(uuid.UUID(ticket["ticket_id"]))
        assert result["status"] == TicketStatus.WAITING.value
        assert result["position"] == 2
        assert result["eta_seconds"] == 60

    def test_position_recomputed_after_leave(self, queue, project):
        first = queue.join("0x1", project.id)
        queue.join("0x2", project.id)
        third = queue.join("0x3", project.id)

        queue.leave(uuid.UUID(first["ticket_id"]))

        result = queue.status(uuid.UUID(third["ticket_id"]))
        assert result["position"] == 2

    def test_shared_stored_position_ordered_by_join_time(self, queue, session, project):
        first = queue.join("0x1", project.id)
        second = queue.join("0x2", project.id)
        queue.leave(uuid.UUID(first["ticket_id"]))
        session.get(QueueTicket, uuid.UUID(second["ticket_id"])).created_at = (
            datetime.now(timezone.utc) - timedelta(seconds=5)
        )
        session.flush()

        third = queue.join("0x3", project.id)
        assert session.get(QueueTicket, uuid.UUID(third["ticket_id"])).position == 2

        assert queue.status(uuid.UUID(second["ticket_id"]))["position"] == 1
        assert queue.status(uuid.UUID(third["ticket_id"]))["position"] == 2

    def test_unknown_ticket(self, queue):
        with pytest.raises(EntityNotFoundError, match="Ticket not found"):
            queue.status(uuid.uuid4())

    def test_missing_ticket_id(self, queue):
        with pytest.raises(ValidationError, match="Ticket ID required"):
            queue.status(None)


class TestLeave:
    """Tests for leaving the queue."""

    def test_leave_expires_ticket(self, queue, session, project):
        ticket = queue.join("0x1", project.id)
        ticket_id = uuid.UUID(ticket["ticket_id"])

        assert queue.leave(ticket_id) == {"success": True}
        assert session.get(QueueTicket, ticket_id).status == TicketStatus.EXPIRED.value
        assert queue.status(ticket_id)["status"] == TicketStatus.EXPIRED.value

    def test_leave_twice_is_noop(self, queue, project):
        ticket_id = uuid.UUID(queue.join("0x1", project.id)["ticket_id"])
        queue.leave(ticket_id)
        assert queue.leave(ticket_id) == {"success": True}

    def test_rejoin_after_leave_gets_new_ticket(self, queue, project):
        first = queue.join("0x1", project.id)
        queue.leave(uuid.UUID(first["ticket_id"]))

        second = queue.join("0x1", project.id)
        assert second["ticket_id"] != first["ticket_id"]
        assert second["message"] == MSG_ADDED

    def test_leave_unknown_ticket(self, queue):
        with pytest.raises(EntityNotFoundError):
            queue.leave(uuid.uuid4())
