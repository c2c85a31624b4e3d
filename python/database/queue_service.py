"""
Priority Queue Ticketing for sale admission

First-come-first-served queue per project with a priority flag for
whitelisted wallets. The stored ticket position is assigned once at join
time and never renumbered; the position shown to callers is always the
rank recomputed from the waiting tickets ahead of it.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from database.errors import ValidationError
from database.models import QueueTicket, TicketStatus, normalize_address, utc_isoformat
from database.repositories import (
    QueueTicketRepository,
    WhitelistRepository,
    DuplicateEntityError,
)
from log_utils import mask_address

logger = logging.getLogger(__name__)

MSG_PRIORITY = 'Priority access granted'
MSG_ADDED = 'Added to queue'
MSG_ALREADY_QUEUED = 'Already in queue'


class QueueService:
    """
    Session-bound queue operations.

    A join's count and insert run in the caller's transaction; a concurrent
    duplicate join is resolved by returning the ticket that won.
    """

    def __init__(self, session: Session, config: Optional[Any] = None):
        self.session = session
        self.tickets = QueueTicketRepository(session)
        self.whitelist = WhitelistRepository(session)
        self.ticket_ttl = timedelta(minutes=15)
        self.avg_service_seconds = 30
        if config is not None:
            self.ticket_ttl = timedelta(minutes=config.queue.ticket_ttl_minutes)
            self.avg_service_seconds = config.queue.avg_service_seconds

    def _eta(self, position: int) -> int:
        return position * self.avg_service_seconds

    def _rank(self, ticket: QueueTicket) -> int:
        return self.tickets.count_waiting_ahead(
            ticket.project_id, ticket.position, ticket.created_at
        ) + 1

    def _join_response(self, ticket: QueueTicket, position: int, message: str) -> Dict[str, Any]:
        return {
            "ticket_id": str(ticket.id),
            "position": position,
            "priority": ticket.priority,
            "eta_seconds": self._eta(position),
            "expires_at": utc_isoformat(ticket.expires_at),
            "message": message,
        }

    def join(self, wallet_address: str, project_id: UUID) -> Dict[str, Any]:
        """
        Join the queue for a project, or return the existing waiting ticket.

        Raises:
            ValidationError: If the wallet address or project id is missing
        """
        wallet = normalize_address(wallet_address)
        if not wallet or project_id is None:
            raise ValidationError("Wallet address and project ID required")

        existing = self.tickets.get_waiting(wallet, project_id)
        if existing is not None:
            logger.info(f"Wallet {mask_address(wallet)} already queued for {project_id}")
            return self._join_response(existing, self._rank(existing), MSG_ALREADY_QUEUED)

        priority = self.whitelist.is_whitelisted(wallet, project_id)
        position = self.tickets.count_waiting(project_id) + 1
        expires_at = datetime.now(timezone.utc) + self.ticket_ttl

        try:
            ticket = self.tickets.create(
                wallet_address=wallet,
                project_id=project_id,
                priority=priority,
                position=position,
                expires_at=expires_at,
            )
        except DuplicateEntityError:
            existing = self.tickets.get_waiting(wallet, project_id)
            if existing is None:
                raise
            logger.info(f"Concurrent join for {mask_address(wallet)} resolved to ticket {existing.id}")
            return self._join_response(existing, self._rank(existing), MSG_ALREADY_QUEUED)

        logger.info(
            f"Queue ticket created: {ticket.id} position={position} priority={priority}"
        )
        return self._join_response(ticket, position, MSG_PRIORITY if priority else MSG_ADDED)

    def status(self, ticket_id: UUID) -> Dict[str, Any]:
        """
        Current status of a ticket with its rank recomputed.

        Raises:
            ValidationError: If the ticket id is missing
            EntityNotFoundError: If the ticket does not exist
        """
        if ticket_id is None:
            raise ValidationError("Ticket ID required")

        ticket = self.tickets.get_or_raise(ticket_id)
        position = self._rank(ticket)
        return {
            "status": ticket.status,
            "position": position,
            "priority": ticket.priority,
            "eta_seconds": self._eta(position),
            "expires_at": utc_isoformat(ticket.expires_at),
        }

    def leave(self, ticket_id: UUID) -> Dict[str, Any]:
        """
        Expire a ticket. Leaving an already expired ticket is a no-op.

        Raises:
            ValidationError: If the ticket id is missing
            EntityNotFoundError: If the ticket does not exist
        """
        if ticket_id is None:
            raise ValidationError("Ticket ID required")

        ticket = self.tickets.get_or_raise(ticket_id)
        if ticket.status != TicketStatus.EXPIRED.value:
            self.tickets.expire(ticket.id)
            logger.info(f"Ticket {ticket.id} left the queue")
        return {"success": True}
