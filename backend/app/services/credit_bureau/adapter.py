"""Abstract credit bureau adapter and factory."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.config import Settings, settings as app_settings
from app.schemas import CreditReportData


class VerifierFailure(Exception):
    """The bureau could not produce a report for this request."""


@dataclass
class BureauSubject:
    """Who the bureau is asked about, as known at pull time."""
    reference_id: str
    first_name: str
    last_name: str
    personal_info: Optional[Dict[str, Any]] = None


@dataclass
class BureauResult:
    report: CreditReportData

    @property
    def score(self) -> int:
        return self.report.score


class CreditBureauAdapter(ABC):
    """Abstract interface for credit bureau integrations."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Name of the credit bureau provider."""
        ...

    @abstractmethod
    async def pull_credit_report(self, subject: BureauSubject) -> Optional[BureauResult]:
        """Pull a credit report for the given subject.

        Returns None when the bureau accepted the order and will deliver the
        report later through the webhook.

        Raises VerifierFailure (or any other exception) when no report can be
        produced; the caller records the check as failed.
        """
        ...

    @abstractmethod
    async def check_health(self) -> bool:
        """Check if the bureau API is reachable."""
        ...


def get_credit_bureau(config: Settings | None = None) -> CreditBureauAdapter:
    """Factory function that returns the configured credit bureau adapter.

    The live Equifax adapter is used only when all three credentials are
    configured; otherwise the simulated bureau stands in.
    """
    config = config or app_settings

    if config.has_live_verifier:
        from app.services.credit_bureau.equifax import EquifaxAdapter
        return EquifaxAdapter(config)
    else:
        from app.services.credit_bureau.mock_bureau import SimulatedBureauAdapter
        return SimulatedBureauAdapter(seed=config.simulated_seed)
