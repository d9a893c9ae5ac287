"""Equifax Canada consumer credit report adapter.

Authenticates with OAuth2 client credentials, then requests a consumer
credit report.  Equifax either answers inline (HTTP 200 with the report) or
accepts the order (HTTP 202) and later posts the report to our webhook,
which completes the check through the same routine.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from app.config import Settings
from app.schemas import (
    CreditReportData,
    Inquiry,
    PublicRecord,
    SubjectName,
    Tradeline,
)
from app.services.credit_bureau.adapter import (
    BureauResult,
    BureauSubject,
    CreditBureauAdapter,
    VerifierFailure,
)
from app.services.credit_report import summarize_tradelines

logger = logging.getLogger(__name__)

TOKEN_PATH = "/v1/oauth/token"
REPORT_PATH = "/business/consumer-credit/v1/reports/credit-report"
HEALTH_PATH = "/v1/health"
OAUTH_SCOPE = "https://api.equifax.com/business/consumer-credit/v1"


def parse_equifax_report(payload: Dict[str, Any]) -> CreditReportData:
    """Map an Equifax report payload (camelCase) onto our report document."""
    name = payload.get("consumerName") or {}
    tradelines = [
        Tradeline(
            account_type=t.get("accountType", "Unknown"),
            balance=t.get("balance") or 0,
            open_date=t["openDate"],
            payment_status=t.get("paymentStatus", "Unknown"),
            account_number=t.get("accountNumber"),
            creditor_name=t.get("creditorName"),
            credit_limit=t.get("creditLimit"),
            monthly_payment=t.get("monthlyPayment"),
            last_payment_date=t.get("lastPaymentDate") or None,
            past_due=t.get("pastDue"),
        )
        for t in payload.get("tradelines", [])
    ]
    inquiries = [
        Inquiry(date=i["date"], inquirer=i["inquirer"], inquiry_type=i.get("inquiryType"))
        for i in payload.get("inquiries", [])
    ]
    public_records = [
        PublicRecord(
            type=r["type"],
            date=r["date"],
            amount=r.get("amount"),
            court_name=r.get("courtName"),
            reference_number=r.get("referenceNumber"),
        )
        for r in payload.get("publicRecords") or []
    ]

    summary = payload.get("summary")
    return CreditReportData(
        subject_name=SubjectName(
            first_name=name.get("firstName", ""),
            last_name=name.get("lastName", ""),
        ),
        score=payload["creditScore"],
        score_factors=payload.get("scoreFactors", []),
        tradelines=tradelines,
        inquiries=inquiries,
        consumer_statements=payload.get("consumerStatements", []),
        public_records=public_records,
        summary=(
            {
                "total_accounts": summary.get("totalAccounts", 0),
                "open_accounts": summary.get("openAccounts", 0),
                "closed_accounts": summary.get("closedAccounts", 0),
                "delinquent_accounts": summary.get("delinquentAccounts", 0),
                "total_balance": summary.get("totalBalance", 0),
                "total_monthly_payments": summary.get("totalMonthlyPayments", 0),
                "utilization": round(summary.get("utilization", 0)),
            }
            if summary
            else summarize_tradelines(tradelines)
        ),
        report_date=payload.get("reportDate") or datetime.now(timezone.utc),
    )


class EquifaxAdapter(CreditBureauAdapter):
    """Live adapter for the Equifax consumer credit API."""

    PROVIDER = "equifax"

    def __init__(self, config: Settings, client: Optional[httpx.AsyncClient] = None):
        self.api_url = config.equifax_api_url.rstrip("/")
        self.api_key = config.equifax_api_key
        self.client_id = config.equifax_client_id
        self.client_secret = config.equifax_client_secret
        self.environment = config.equifax_environment
        self.timeout = config.equifax_timeout_seconds
        self._client = client

    @property
    def provider_name(self) -> str:
        return self.PROVIDER

    def _http(self) -> httpx.AsyncClient:
        return self._client or httpx.AsyncClient(base_url=self.api_url, timeout=self.timeout)

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        response = await client.post(
            TOKEN_PATH,
            data={"grant_type": "client_credentials", "scope": OAUTH_SCOPE},
            auth=(self.client_id, self.client_secret),
        )
        if response.status_code >= 400:
            raise VerifierFailure(f"Equifax authentication failed ({response.status_code})")
        token = response.json().get("access_token")
        if not token:
            raise VerifierFailure("Equifax authentication returned no access token")
        return token

    def _build_order(self, subject: BureauSubject) -> Dict[str, Any]:
        info = subject.personal_info or {}
        address = info.get("current_address") or {}
        return {
            "consumers": {
                "name": [{
                    "identifier": "current",
                    "firstName": info.get("first_name", subject.first_name),
                    "lastName": info.get("last_name", subject.last_name),
                }],
                "socialNum": [{"identifier": "current", "number": info.get("sin", "")}],
                "dateOfBirth": info.get("date_of_birth", ""),
                "addresses": [{
                    "identifier": "current",
                    "streetName": address.get("street", ""),
                    "city": address.get("city", ""),
                    "province": address.get("province", ""),
                    "postalCode": address.get("postal_code", ""),
                }],
            },
            "customerReferenceIdentifier": subject.reference_id,
            "environment": self.environment,
        }

    async def pull_credit_report(self, subject: BureauSubject) -> Optional[BureauResult]:
        """Order a report; returns None when Equifax will deliver it by webhook."""
        client = self._http()
        try:
            token = await self._get_access_token(client)
            response = await client.post(
                REPORT_PATH,
                json=self._build_order(subject),
                headers={
                    "Authorization": f"Bearer {token}",
                    "x-api-key": self.api_key,
                    "efx-client-correlation-id": subject.reference_id,
                },
            )
        except httpx.HTTPError as exc:
            raise VerifierFailure(f"Equifax request failed: {exc}") from exc
        finally:
            if self._client is None:
                await client.aclose()

        if response.status_code == 202:
            logger.info("Equifax accepted order %s; awaiting callback", subject.reference_id)
            return None
        if response.status_code >= 400:
            raise VerifierFailure(
                f"Equifax returned {response.status_code} for {subject.reference_id}"
            )

        report = parse_equifax_report(response.json())
        return BureauResult(report=report)

    async def check_health(self) -> bool:
        client = self._http()
        try:
            response = await client.get(HEALTH_PATH, headers={"x-api-key": self.api_key})
            return response.status_code < 400
        except httpx.HTTPError:
            return False
        finally:
            if self._client is None:
                await client.aclose()
