"""
Eligibility Gate for the Launchpad Gate service

Combines the wallet's approved KYC record, the country denylist and the
sanctions placeholder into a single admission verdict, and stores that
verdict (one row per wallet) in the caller's transaction.

Usage:
    with db_provider.session_scope() as session:
        verdict = EligibilityService(session, config).check("0xAbC...")
        verdict.eligible
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Iterable

from sqlalchemy.orm import Session

from database.errors import ValidationError
from database.models import KYCSubmission, normalize_address, normalize_country
from database.repositories import KYCRepository, EligibilityRepository
from log_utils import mask_address

logger = logging.getLogger(__name__)

DEFAULT_BLOCKED_COUNTRIES = ('US', 'CN', 'IR', 'KP', 'SY')

MSG_ELIGIBLE = 'Eligible to participate'
MSG_KYC_NOT_APPROVED = 'KYC not approved'
MSG_REGION_BLOCKED = 'Region is blocked'
MSG_SANCTIONS_FAILED = 'Failed sanctions screening'


@dataclass
class EligibilityVerdict:
    """Combined KYC + geo + sanctions decision for one wallet"""
    wallet_address: str
    kyc_approved: bool
    geo_blocked: bool
    sanctions_check: bool
    country: Optional[str] = None

    @property
    def eligible(self) -> bool:
        return self.kyc_approved and not self.geo_blocked and self.sanctions_check

    @property
    def message(self) -> str:
        # KYC failure > geo block > sanctions failure > success
        if self.eligible:
            return MSG_ELIGIBLE
        if not self.kyc_approved:
            return MSG_KYC_NOT_APPROVED
        if self.geo_blocked:
            return MSG_REGION_BLOCKED
        return MSG_SANCTIONS_FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eligible": self.eligible,
            "kyc_approved": self.kyc_approved,
            "geo_blocked": self.geo_blocked,
            "sanctions_check": self.sanctions_check,
            "country": self.country,
            "message": self.message,
        }


def evaluate_eligibility(
    wallet_address: str,
    approved_kyc: Optional[KYCSubmission],
    blocked_countries: Iterable[str] = DEFAULT_BLOCKED_COUNTRIES
) -> EligibilityVerdict:
    """
    Pure gate policy.

    Args:
        wallet_address: Normalized wallet address
        approved_kyc: The wallet's most recent approved KYC record, or None
        blocked_countries: Denylisted ISO alpha-2 codes
    """
    if approved_kyc is None:
        return EligibilityVerdict(
            wallet_address=wallet_address,
            kyc_approved=False,
            geo_blocked=False,
            sanctions_check=True,
            country=None,
        )

    country = normalize_country(approved_kyc.country)
    geo_blocked = country is not None and country in set(blocked_countries)
    # Sanctions screening placeholder: fails exactly when geo-blocked
    sanctions_check = not geo_blocked

    return EligibilityVerdict(
        wallet_address=wallet_address,
        kyc_approved=True,
        geo_blocked=geo_blocked,
        sanctions_check=sanctions_check,
        country=country,
    )


class EligibilityService:
    """
    Session-bound eligibility gate.

    The verdict row is written in the session's transaction; the caller
    commits. A store failure propagates so no verdict is returned unrecorded.
    """

    def __init__(self, session: Session, config: Optional[Any] = None):
        self.session = session
        self.kyc_repo = KYCRepository(session)
        self.eligibility_repo = EligibilityRepository(session)
        self.blocked_countries = list(DEFAULT_BLOCKED_COUNTRIES)
        if config is not None:
            self.blocked_countries = list(config.eligibility.blocked_countries)

    def check(self, wallet_address: str, ip_address: Optional[str] = None) -> EligibilityVerdict:
        """
        Compute and persist the verdict for a wallet.

        Raises:
            ValidationError: If the wallet address is empty
        """
        wallet = normalize_address(wallet_address)
        if not wallet:
            raise ValidationError("Wallet address is required")

        approved = self.kyc_repo.get_latest_approved(wallet)
        verdict = evaluate_eligibility(wallet, approved, self.blocked_countries)

        self.eligibility_repo.upsert(
            wallet_address=wallet,
            kyc_approved=verdict.kyc_approved,
            geo_blocked=verdict.geo_blocked,
            sanctions_check=verdict.sanctions_check,
            country_code=verdict.country,
            ip_address=ip_address,
            checked_at=datetime.now(timezone.utc),
        )

        logger.info(
            f"Eligibility for {mask_address(wallet)}: eligible={verdict.eligible} "
            f"kyc={verdict.kyc_approved} geo_blocked={verdict.geo_blocked}"
        )
        return verdict
