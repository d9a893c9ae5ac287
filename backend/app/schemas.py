"""Pydantic schemas for request/response validation."""

from datetime import datetime, date
from typing import Optional, Literal
from pydantic import BaseModel, Field, computed_field

from app.models.credit_check import CreditCheckStatus


# ── Credit report document ────────────────────────────

class SubjectName(BaseModel):
    first_name: str
    last_name: str


class Tradeline(BaseModel):
    account_type: str
    balance: float
    open_date: date
    payment_status: str
    account_number: Optional[str] = None
    creditor_name: Optional[str] = None
    credit_limit: Optional[float] = None
    monthly_payment: Optional[float] = None
    last_payment_date: Optional[date] = None
    past_due: Optional[float] = None


class Inquiry(BaseModel):
    date: datetime
    inquirer: str
    inquiry_type: Optional[str] = None


class PublicRecord(BaseModel):
    type: str
    date: date
    amount: Optional[float] = None
    court_name: Optional[str] = None
    reference_number: Optional[str] = None


class ReportSummary(BaseModel):
    total_accounts: int = 0
    open_accounts: int = 0
    closed_accounts: int = 0
    delinquent_accounts: int = 0
    total_balance: float = 0
    total_monthly_payments: float = 0
    utilization: int = Field(0, description="Balance-to-limit % across revolving accounts")


class CreditReportData(BaseModel):
    """Structured bureau report stored on a completed credit check."""

    subject_name: SubjectName
    score: int = Field(ge=300, le=900)
    score_factors: list[str] = []
    tradelines: list[Tradeline] = []
    inquiries: list[Inquiry] = []
    consumer_statements: list[str] = []
    public_records: list[PublicRecord] = []
    summary: ReportSummary = Field(default_factory=ReportSummary)
    report_date: datetime

    @computed_field
    @property
    def score_band(self) -> str:
        from app.services.credit_report import score_band
        return score_band(self.score)


# ── Credit check requests ─────────────────────────────

class Address(BaseModel):
    street: str
    city: str
    province: str
    postal_code: str


class PersonalInfo(BaseModel):
    """Identifying details forwarded to the bureau; never persisted."""
    first_name: str
    last_name: str
    date_of_birth: date
    sin: str = Field(min_length=9, max_length=11, description="Social Insurance Number")
    current_address: Address


class CreditCheckRequest(BaseModel):
    consent_provided: bool
    consent_date: Optional[datetime] = None
    application_id: Optional[int] = None
    personal_info: Optional[PersonalInfo] = None
    check_recent: bool = False


class CreditCheckResponse(BaseModel):
    id: int
    user_id: int
    application_id: Optional[int] = None
    status: CreditCheckStatus
    reference_id: str
    provider: str
    consent_provided: bool
    consent_date: datetime
    score: Optional[int] = None
    score_band: Optional[str] = None
    report: Optional[CreditReportData] = None
    failure_reason: Optional[str] = None
    request_date: datetime
    completed_date: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CreditCheckRequestResult(BaseModel):
    success: bool = True
    reference_id: str
    is_recent: bool = False
    credit_check: CreditCheckResponse


class CreditCheckAvailability(BaseModel):
    available: bool
    days: int


class CreditCheckWebhook(BaseModel):
    """Callback payload posted by the bureau when a report is ready."""
    reference_id: str
    status: Literal["completed", "failed"]
    report: Optional[CreditReportData] = None
    error: Optional[str] = None


class CreditScoreComponent(BaseModel):
    user_id: int
    application_id: Optional[int] = None
    component: Optional[int] = None
