"""Credit report helpers: score bands, tradeline summaries, score scaling.

Canadian bureau scores run from 300 to 900.  The qualitative bands match
what tenants and landlords see next to a score in the portal.
"""

from typing import Iterable

from app.schemas import Tradeline, ReportSummary

MIN_CREDIT_SCORE = 300
MAX_CREDIT_SCORE = 900

# (lower bound inclusive, label), checked from the top down
SCORE_BANDS = [
    (760, "Excellent"),
    (725, "Very Good"),
    (660, "Good"),
    (600, "Fair"),
]
LOWEST_BAND = "Poor"

CLOSED_STATUSES = {"closed", "paid", "paid off", "transferred"}
DELINQUENT_MARKERS = ("late", "delinquent", "collection", "charge", "default", "past due")


def score_band(score: int) -> str:
    """Return the qualitative label for a bureau score."""
    for lower, label in SCORE_BANDS:
        if score >= lower:
            return label
    return LOWEST_BAND


def _is_closed(tradeline: Tradeline) -> bool:
    return tradeline.payment_status.strip().lower() in CLOSED_STATUSES


def _is_delinquent(tradeline: Tradeline) -> bool:
    if tradeline.past_due and tradeline.past_due > 0:
        return True
    status = tradeline.payment_status.lower()
    return any(marker in status for marker in DELINQUENT_MARKERS)


def summarize_tradelines(tradelines: Iterable[Tradeline]) -> ReportSummary:
    """Aggregate counters for a report summary.

    Utilization is computed over revolving accounts only, i.e. tradelines
    that report a credit limit, and rounded to a whole percentage.
    """
    tradelines = list(tradelines)
    closed = sum(1 for t in tradelines if _is_closed(t))
    delinquent = sum(1 for t in tradelines if _is_delinquent(t))

    revolving = [t for t in tradelines if t.credit_limit]
    total_limit = sum(t.credit_limit for t in revolving)
    revolving_balance = sum(t.balance for t in revolving)
    utilization = round(revolving_balance / total_limit * 100) if total_limit else 0

    return ReportSummary(
        total_accounts=len(tradelines),
        open_accounts=len(tradelines) - closed,
        closed_accounts=closed,
        delinquent_accounts=delinquent,
        total_balance=sum(t.balance for t in tradelines),
        total_monthly_payments=sum(t.monthly_payment or 0 for t in tradelines),
        utilization=utilization,
    )


def map_credit_score_to_100(credit_score: int) -> int:
    """Scale a bureau score onto 0-100, clamping to the bureau range first."""
    clamped = max(MIN_CREDIT_SCORE, min(credit_score, MAX_CREDIT_SCORE))
    return round((clamped - MIN_CREDIT_SCORE) / (MAX_CREDIT_SCORE - MIN_CREDIT_SCORE) * 100)
