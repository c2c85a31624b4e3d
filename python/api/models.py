"""
Pydantic request/response schemas for the Launchpad Gate API

Request models reject unknown fields and use the camelCase wire names
(walletAddress, projectId, ...) as aliases; responses are snake_case.
"""

from typing import List, Optional, Dict, Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RequestModel(BaseModel):
    """Base for request bodies: strict about unknown fields."""
    model_config = ConfigDict(extra="forbid", populate_by_name=True, str_strip_whitespace=True)


def _require_address(v: str) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("Wallet address is required")
    return v.lower()


# ============================================
# ELIGIBILITY
# ============================================

class EligibilityRequest(RequestModel):
    """Request schema for an eligibility check."""
    wallet_address: str = Field(..., alias="walletAddress", max_length=64, description="Wallet address")
    ip_address: Optional[str] = Field(
        default=None,
        alias="ipAddress",
        max_length=64,
        description="Client IP (recorded, not used for the decision)"
    )

    @field_validator('wallet_address')
    @classmethod
    def validate_wallet(cls, v: str) -> str:
        return _require_address(v)


class EligibilityResponse(BaseModel):
    """Eligibility verdict."""
    eligible: bool
    kyc_approved: bool
    geo_blocked: bool
    sanctions_check: bool
    country: Optional[str] = None
    message: str


# ============================================
# QUEUE
# ============================================

class JoinQueueRequest(RequestModel):
    """Body of action=join."""
    wallet_address: str = Field(..., alias="walletAddress", max_length=64)
    project_id: UUID = Field(..., alias="projectId")

    @field_validator('wallet_address')
    @classmethod
    def validate_wallet(cls, v: str) -> str:
        return _require_address(v)


class QueueStatusQuery(RequestModel):
    """Query of action=status."""
    ticket_id: UUID = Field(..., alias="ticketId")


class LeaveQueueRequest(RequestModel):
    """Body of action=leave."""
    ticket_id: UUID = Field(..., alias="ticketId")


class JoinQueueResponse(BaseModel):
    ticket_id: str
    position: int = Field(..., ge=1)
    priority: bool
    eta_seconds: int = Field(..., ge=0)
    expires_at: str
    message: str


class QueueStatusResponse(BaseModel):
    status: str
    position: int = Field(..., ge=1)
    priority: bool
    eta_seconds: int = Field(..., ge=0)
    expires_at: str


class SuccessResponse(BaseModel):
    success: bool = True


# ============================================
# DISTRIBUTION
# ============================================

class DistributionRequest(RequestModel):
    """Request schema for the batch distribution planner."""
    project_id: UUID = Field(..., alias="projectId")
    batch_size: Optional[int] = Field(
        default=None,
        alias="batchSize",
        ge=1,
        description="Recipients per batch (default from config)"
    )


class BatchRecipient(BaseModel):
    address: str
    amount: float
    investment_id: str


class Batch(BaseModel):
    batch_number: int = Field(..., ge=1)
    recipients: List[BatchRecipient]
    total_recipients: int
    total_tokens: float


class DistributionSummary(BaseModel):
    total_batches: int
    total_recipients: int
    total_tokens: float
    estimated_gas_cost: float


class DistributionInstructions(BaseModel):
    next_steps: List[str]


class DistributionResponse(BaseModel):
    """Planner result; job fields are absent when nothing was pending."""
    success: bool = True
    message: Optional[str] = None
    job_id: Optional[str] = None
    batches: List[Batch] = Field(default_factory=list)
    summary: Optional[DistributionSummary] = None
    instructions: Optional[DistributionInstructions] = None


class JobStatusUpdateRequest(RequestModel):
    """Manual job status progression."""
    status: Literal["in_progress", "completed", "failed"]
    completed_batches: Optional[int] = Field(default=None, alias="completedBatches", ge=0)
    error_message: Optional[str] = Field(default=None, alias="errorMessage", max_length=2000)


class DistributionJobResponse(BaseModel):
    job_id: str
    project_id: str
    status: str
    total_batches: int
    total_recipients: int
    total_tokens: float
    batch_size: int
    completed_batches: int
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    batches: Optional[List[Batch]] = None


class DistributionJobListResponse(BaseModel):
    jobs: List[DistributionJobResponse]
    count: int


# ============================================
# KYC
# ============================================

class KYCSubmitRequest(RequestModel):
    """User KYC submission."""
    wallet_address: str = Field(..., alias="walletAddress", max_length=64)
    full_name: str = Field(..., alias="fullName", min_length=2, max_length=200)
    email: str = Field(..., max_length=320, pattern=r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
    country: str = Field(..., min_length=2, max_length=64)
    document_type: str = Field(..., alias="documentType", min_length=1, max_length=50)
    document_number: Optional[str] = Field(default=None, alias="documentNumber", max_length=100)

    @field_validator('wallet_address')
    @classmethod
    def validate_wallet(cls, v: str) -> str:
        return _require_address(v)


class KYCReviewRequest(RequestModel):
    """Admin review decision."""
    decision: Literal["approve", "reject", "reset"]
    reviewer: Optional[str] = Field(default=None, max_length=200)
    rejection_reason: Optional[str] = Field(default=None, alias="rejectionReason", max_length=2000)


class KYCWebhookPayload(BaseModel):
    """Provider webhook body.

    Providers attach their own fields; those are kept and stored with the
    webhook event.
    """
    model_config = ConfigDict(extra="allow")

    provider: str = Field(..., min_length=1, max_length=50)
    wallet_address: str = Field(..., min_length=1, max_length=64)
    status: str = Field(..., min_length=1, max_length=50)
    full_name: Optional[str] = Field(default=None, max_length=200)
    email: Optional[str] = Field(default=None, max_length=320)
    country: Optional[str] = Field(default=None, max_length=64)
    document_type: Optional[str] = Field(default=None, max_length=50)


class KYCSubmissionResponse(BaseModel):
    kyc_id: str
    wallet_address: str
    status: str
    country: Optional[str] = None
    document_type: Optional[str] = None
    rejection_reason: Optional[str] = None
    submitted_at: Optional[str] = None
    reviewed_at: Optional[str] = None
    reviewed_by: Optional[str] = None
    eligibility: Optional[EligibilityResponse] = None


class KYCWebhookResponse(BaseModel):
    success: bool
    kyc_id: str
    status: str


# ============================================
# PROJECTS, HEALTH, ERRORS
# ============================================

class ProjectStatusUpdate(BaseModel):
    id: str
    name: str
    status: str


class ProjectStatusRefreshResponse(BaseModel):
    message: str
    updated: int
    updates: List[ProjectStatusUpdate] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    database: Dict[str, Any] = Field(default_factory=dict, description="Database health")
    memory_usage_mb: Optional[float] = Field(default=None, description="Current memory usage in MB")
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")
    error_message: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error response format."""
    error: str
