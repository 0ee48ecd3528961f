"""
SLA Stats Aggregation
=====================

Point-in-time counts by classification, used for scan logs and the dashboard.
"""

from dataclasses import asdict, dataclass
from typing import Iterable

from config import SLAClassification
from sla.domain.entities import TicketEvaluation


@dataclass(frozen=True)
class SLAStats:
    """Counts by classification over one set of evaluations."""
    total: int = 0
    with_sla: int = 0
    on_track: int = 0
    at_risk: int = 0
    breached: int = 0
    met: int = 0
    stopped: int = 0
    unclassified: int = 0
    errors: int = 0

    @property
    def risk_rate(self) -> float:
        """Share of tickets with an SLA that are at risk, in percent."""
        if not self.with_sla:
            return 0.0
        return round(self.at_risk / self.with_sla * 100, 2)

    @property
    def breach_rate(self) -> float:
        """Share of tickets with an SLA that are breached, in percent."""
        if not self.with_sla:
            return 0.0
        return round(self.breached / self.with_sla * 100, 2)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["risk_rate"] = self.risk_rate
        data["breach_rate"] = self.breach_rate
        return data


def aggregate(evaluations: Iterable[TicketEvaluation], errors: int = 0) -> SLAStats:
    """
    Sum per-ticket evaluations into an SLAStats.

    ``errors`` counts tickets that failed before producing an evaluation;
    they are included in ``total``.
    """
    counts = {classification: 0 for classification in SLAClassification}
    total = 0
    with_sla = 0

    for evaluation in evaluations:
        total += 1
        counts[SLAClassification(evaluation.classification)] += 1
        if evaluation.has_sla:
            with_sla += 1

    return SLAStats(
        total=total + errors,
        with_sla=with_sla,
        on_track=counts[SLAClassification.ON_TRACK],
        at_risk=counts[SLAClassification.AT_RISK],
        breached=counts[SLAClassification.BREACHED],
        met=counts[SLAClassification.MET],
        stopped=counts[SLAClassification.STOPPED],
        unclassified=counts[SLAClassification.UNCLASSIFIED],
        errors=errors,
    )
