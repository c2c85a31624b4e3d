"""
KYC workflows: user submission, admin review and provider webhooks.

Each workflow keeps at most one KYC submission per wallet and refreshes the
wallet's eligibility verdict through the eligibility gate in the same
transaction, so a denylisted country stays geo-blocked after approval.
"""

import hmac
import hashlib
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from database.errors import ValidationError, InvalidSignatureError
from database.eligibility_service import EligibilityService, EligibilityVerdict
from database.models import (
    KYCSubmission,
    KYCStatus,
    AuditAction,
    normalize_address,
    normalize_country,
    utc_isoformat,
)
from database.repositories import (
    KYCRepository,
    AuditRepository,
    WebhookEventRepository,
    EntityNotFoundError,
)
from log_utils import mask_address, sanitize_for_logging

logger = logging.getLogger(__name__)

REVIEW_ACTIONS = {
    "approve": AuditAction.APPROVE_KYC,
    "reject": AuditAction.REJECT_KYC,
    "reset": AuditAction.RESET_KYC,
}


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of a raw webhook body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def submission_to_dict(submission: KYCSubmission) -> Dict[str, Any]:
    return {
        "kyc_id": str(submission.id),
        "wallet_address": submission.wallet_address,
        "status": submission.status,
        "country": submission.country,
        "document_type": submission.document_type,
        "rejection_reason": submission.rejection_reason,
        "submitted_at": utc_isoformat(submission.submitted_at),
        "reviewed_at": utc_isoformat(submission.reviewed_at),
        "reviewed_by": submission.reviewed_by,
    }


class KYCService:
    """Session-bound KYC workflows."""

    def __init__(self, session: Session, config: Optional[Any] = None):
        self.session = session
        self.config = config
        self.kyc_repo = KYCRepository(session)
        self.audit = AuditRepository(session)
        self.webhooks = WebhookEventRepository(session)
        self.eligibility = EligibilityService(session, config)

    # ============================================
    # USER SUBMISSION
    # ============================================

    def submit(
        self,
        wallet_address: str,
        full_name: str,
        email: str,
        country: str,
        document_type: str,
        document_number: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a pending submission, or re-open a rejected one.

        Raises:
            ValidationError: If the wallet already has a pending or approved
                submission
        """
        wallet = normalize_address(wallet_address)
        if not wallet:
            raise ValidationError("Wallet address is required")

        details = {
            "full_name": full_name.strip(),
            "email": email.strip(),
            "country": normalize_country(country),
            "document_type": document_type.strip(),
            "document_number": document_number.strip() if document_number else None,
        }

        existing = self.kyc_repo.get_latest(wallet)
        if existing is not None and existing.status != KYCStatus.REJECTED.value:
            raise ValidationError("KYC already submitted")

        if existing is not None:
            submission = self.kyc_repo.update(existing, {
                **details,
                "status": KYCStatus.PENDING.value,
                "rejection_reason": None,
                "reviewed_at": None,
                "reviewed_by": None,
                "submitted_at": datetime.now(timezone.utc),
            })
            logger.info(f"KYC resubmitted for {mask_address(wallet)}")
        else:
            submission = self.kyc_repo.create({
                "wallet_address": wallet,
                "status": KYCStatus.PENDING.value,
                **details,
            })
            logger.info(f"KYC submitted for {mask_address(wallet)}")

        return submission_to_dict(submission)

    # ============================================
    # ADMIN REVIEW
    # ============================================

    def review(
        self,
        submission_id: UUID,
        decision: str,
        reviewer: Optional[str] = None,
        rejection_reason: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Apply an admin decision (approve, reject or reset) to a submission.

        Raises:
            ValidationError: On an unknown decision
            EntityNotFoundError: If the submission does not exist
        """
        if decision not in REVIEW_ACTIONS:
            raise ValidationError(f"Invalid decision: {sanitize_for_logging(decision)}")

        submission = self.kyc_repo.get_by_id(submission_id)
        if submission is None:
            raise EntityNotFoundError("KYC submission not found")

        previous = submission.status
        now = datetime.now(timezone.utc)

        if decision == "approve":
            updates = {
                "status": KYCStatus.APPROVED.value,
                "reviewed_at": now,
                "reviewed_by": reviewer,
                "rejection_reason": None,
            }
        elif decision == "reject":
            updates = {
                "status": KYCStatus.REJECTED.value,
                "reviewed_at": now,
                "reviewed_by": reviewer,
                "rejection_reason": rejection_reason,
            }
        else:
            updates = {
                "status": KYCStatus.PENDING.value,
                "reviewed_at": None,
                "reviewed_by": None,
                "rejection_reason": None,
            }

        self.kyc_repo.update(submission, updates)
        verdict = self.eligibility.check(submission.wallet_address)

        self.audit.log(
            REVIEW_ACTIONS[decision],
            details={
                "kyc_id": str(submission.id),
                "from_status": previous,
                "to_status": submission.status,
                "rejection_reason": rejection_reason if decision == "reject" else None,
            },
            actor=reviewer,
            target=submission.wallet_address,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        logger.info(
            f"KYC {submission.id} for {mask_address(submission.wallet_address)}: "
            f"{previous} -> {submission.status}"
        )

        result = submission_to_dict(submission)
        result["eligibility"] = verdict.to_dict()
        return result

    # ============================================
    # PROVIDER WEBHOOK
    # ============================================

    def verify_signature(self, provider: str, body: bytes, signature: Optional[str]) -> None:
        """
        Check the provider's HMAC signature over the raw body.

        Raises:
            InvalidSignatureError: If the signature is missing or wrong, or no
                secret is configured and unsigned webhooks are not allowed
        """
        secret = self.config.get_webhook_secret(provider) if self.config is not None else None

        if not secret:
            allow_unsigned = self.config is not None and self.config.kyc.allow_unsigned_webhooks
            if allow_unsigned:
                logger.warning(
                    f"No webhook secret for provider '{sanitize_for_logging(provider)}', "
                    f"signature verification bypassed"
                )
                return
            raise InvalidSignatureError("Invalid signature")

        if not signature:
            raise InvalidSignatureError("Invalid signature")

        # Header values arrive latin-1 decoded; compare as bytes
        expected = compute_signature(secret, body).encode("ascii")
        provided = signature.strip().lower().encode("utf-8", "surrogateescape")
        if not hmac.compare_digest(expected, provided):
            raise InvalidSignatureError("Invalid signature")

    def process_webhook(
        self,
        payload: Dict[str, Any],
        signature: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Apply a provider status update.

        The payload must already have passed verify_signature.

        Raises:
            ValidationError: If provider, wallet_address or status is missing
        """
        provider = (payload.get("provider") or "").strip()
        wallet = normalize_address(payload.get("wallet_address"))
        provider_status = (payload.get("status") or "").strip()
        if not provider or not wallet or not provider_status:
            raise ValidationError("Missing required fields: wallet_address, status, provider")

        status = (
            KYCStatus.APPROVED.value if provider_status.lower() == "approved"
            else KYCStatus.REJECTED.value
        )
        now = datetime.now(timezone.utc)
        reviewed_by = f"{provider}_webhook"

        submission = self.kyc_repo.get_latest(wallet)
        if submission is not None:
            updates = {"status": status, "reviewed_at": now, "reviewed_by": reviewed_by}
            if payload.get("country"):
                updates["country"] = normalize_country(payload["country"])
            self.kyc_repo.update(submission, updates)
        else:
            submission = self.kyc_repo.create({
                "wallet_address": wallet,
                "full_name": payload.get("full_name") or "Unknown",
                "email": payload.get("email") or "unknown@example.com",
                "country": normalize_country(payload.get("country")),
                "document_type": payload.get("document_type") or "unknown",
                "status": status,
                "reviewed_at": now,
                "reviewed_by": reviewed_by,
            })

        self.webhooks.record(
            provider=provider,
            event_type="kyc_status_update",
            payload=payload,
            signature=signature,
            status="processed",
        )

        verdict: EligibilityVerdict = self.eligibility.check(wallet)

        self.audit.log(
            AuditAction.KYC_WEBHOOK,
            details={
                "kyc_id": str(submission.id),
                "provider": provider,
                "status": status,
            },
            actor=reviewed_by,
            target=wallet,
        )

        logger.info(
            f"KYC webhook processed: {mask_address(wallet)} -> {status} "
            f"(eligible={verdict.eligible})"
        )

        return {
            "success": True,
            "kyc_id": str(submission.id),
            "status": submission.status,
        }
