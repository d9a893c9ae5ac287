"""Simulated credit bureau for development and testing.

Stands in for Equifax when no credentials are configured.  Produces a
report shaped like an Equifax Canada consumer report so the whole
pending → completed path can be exercised without a live dependency.

Sections generated:
 - Subject name snapshot
 - Score in [550, 850] with the usual score factors
 - Three tradelines (credit card, installment loan, mortgage)
 - Two prior inquiries (90 and 180 days before the report)
 - Summary counters derived from the tradelines
"""

import random
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from app.schemas import CreditReportData, SubjectName, Tradeline, Inquiry
from app.services.credit_bureau.adapter import (
    BureauResult,
    BureauSubject,
    CreditBureauAdapter,
)
from app.services.credit_report import summarize_tradelines

SIMULATED_SCORE_RANGE = (550, 850)

SCORE_FACTORS = [
    "Length of credit history",
    "Credit utilization",
    "Payment history",
    "Recent inquiries",
]


def _sample_tradelines() -> list[Tradeline]:
    return [
        Tradeline(
            account_type="Credit Card",
            balance=2500,
            open_date=date(2019, 5, 15),
            payment_status="Current",
            account_number="XXXX-XXXX-XXXX-1234",
            creditor_name="SCOTIA BANK",
            credit_limit=5000,
            monthly_payment=100,
            last_payment_date=date(2023, 3, 1),
        ),
        Tradeline(
            account_type="Installment Loan",
            balance=15000,
            open_date=date(2020, 1, 10),
            payment_status="Current",
            account_number="LOAN12345",
            creditor_name="TD BANK",
            monthly_payment=350,
            last_payment_date=date(2023, 2, 28),
        ),
        Tradeline(
            account_type="Mortgage",
            balance=250000,
            open_date=date(2018, 6, 12),
            payment_status="Current",
            creditor_name="ROYAL BANK",
            monthly_payment=1200,
            last_payment_date=date(2023, 3, 5),
        ),
    ]


class SimulatedBureauAdapter(CreditBureauAdapter):
    """Seeded stand-in bureau; the same seed yields the same score sequence."""

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)

    @property
    def provider_name(self) -> str:
        return "simulated"

    async def pull_credit_report(self, subject: BureauSubject) -> BureauResult:
        score = self._rng.randint(*SIMULATED_SCORE_RANGE)
        report_date = datetime.now(timezone.utc)
        tradelines = _sample_tradelines()

        report = CreditReportData(
            subject_name=SubjectName(
                first_name=subject.first_name or "SAMPLE",
                last_name=subject.last_name or "REPORT",
            ),
            score=score,
            score_factors=list(SCORE_FACTORS),
            tradelines=tradelines,
            inquiries=[
                Inquiry(
                    date=report_date - timedelta(days=90),
                    inquirer="CAPITAL ONE",
                    inquiry_type="Credit Card Application",
                ),
                Inquiry(
                    date=report_date - timedelta(days=180),
                    inquirer="ROGERS COMMUNICATIONS",
                    inquiry_type="Service Application",
                ),
            ],
            consumer_statements=[],
            public_records=[],
            summary=summarize_tradelines(tradelines),
            report_date=report_date,
        )
        return BureauResult(report=report)

    async def check_health(self) -> bool:
        return True
