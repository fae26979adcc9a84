"""
stock_engines.containers -- Container verification status and recommendation.

Responsibility:
    Compute whether a container's tare weight is still trustworthy, and
    rank candidate containers for an item so staff reach for the most
    suitable one.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The lifecycle tracker
    calls ``compute_verification_status``; callers choosing a container
    call ``rank_containers``.

Invariants enforced:
    - Verification status is a pure function of (last weighed, as-of,
      window, grace).
    - Retired and overdue containers are never recommended.
    - Ranking is deterministic: ties are broken by container id.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum

from stock_kernel.domain.containers import ContainerInstance, VerificationStatus
from stock_kernel.domain.items import InventoryItem
from stock_kernel.logging_config import get_logger

logger = get_logger("engines.containers")

DEFAULT_VERIFICATION_WINDOW_DAYS = 180
DEFAULT_VERIFICATION_GRACE_DAYS = 30
MAX_RECOMMENDATIONS = 10

BASE_SCORE = 100


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def compute_verification_status(
    last_weighed: date | datetime,
    as_of: date | datetime,
    window_days: int = DEFAULT_VERIFICATION_WINDOW_DAYS,
    grace_days: int = DEFAULT_VERIFICATION_GRACE_DAYS,
) -> VerificationStatus:
    """``overdue`` past the window, ``due_soon`` within the last ``grace_days``
    of it, else ``current``."""
    age_days = (_as_date(as_of) - _as_date(last_weighed)).days
    days_until_due = window_days - age_days
    if days_until_due < 0:
        return VerificationStatus.OVERDUE
    if days_until_due <= grace_days:
        return VerificationStatus.DUE_SOON
    return VerificationStatus.CURRENT


class RecommendationTier(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"


@dataclass(frozen=True)
class ContainerRecommendation:
    container: ContainerInstance
    score: int
    tier: RecommendationTier
    reasons: tuple[str, ...]


def _tier(score: int) -> RecommendationTier:
    if score >= 130:
        return RecommendationTier.EXCELLENT
    if score >= 110:
        return RecommendationTier.GOOD
    return RecommendationTier.ACCEPTABLE


def score_container(
    container: ContainerInstance,
    item: InventoryItem,
    as_of: datetime,
) -> ContainerRecommendation:
    score = BASE_SCORE
    reasons: list[str] = []

    if item.default_container_category and container.category == item.default_container_category:
        score += 20
        reasons.append("Matches required container category")

    if item.typical_unit_weight_grams and container.tare_weight_grams > 0:
        ratio = item.typical_unit_weight_grams / container.tare_weight_grams
        if Decimal("0.1") < ratio < Decimal("10"):
            score += 10
            reasons.append("Good weight capacity match")

    if container.last_used_date is None:
        score += 15
        reasons.append("Fresh container (never used)")
    elif as_of - container.last_used_date > timedelta(days=1):
        score += 5
        reasons.append("Container has been cleaned (not recently used)")

    if container.verification_status is VerificationStatus.CURRENT:
        score += 10
        reasons.append("Current verification status")
    elif container.verification_status is VerificationStatus.DUE_SOON:
        score -= 5
        reasons.append("Verification due soon")

    if container.last_item_id is not None and container.last_item_id == item.item_id:
        score += 15
        reasons.append("Previously used for this same item")

    return ContainerRecommendation(
        container=container,
        score=score,
        tier=_tier(score),
        reasons=tuple(reasons),
    )


def rank_containers(
    containers: Iterable[ContainerInstance],
    item: InventoryItem,
    as_of: datetime,
    limit: int = MAX_RECOMMENDATIONS,
) -> tuple[ContainerRecommendation, ...]:
    """Best containers for ``item``, highest score first.

    Containers are expected to carry a verification status already
    recomputed for ``as_of`` (see ``LifecycleTracker.container``).
    """
    eligible = [
        c for c in containers
        if c.is_active and c.verification_status is not VerificationStatus.OVERDUE
    ]
    scored = sorted(
        (score_container(c, item, as_of) for c in eligible),
        key=lambda r: (-r.score, r.container.container_id),
    )
    top = tuple(scored[:limit])
    logger.info(
        "containers_ranked",
        extra={
            "item_id": item.item_id,
            "candidates": len(eligible),
            "returned": len(top),
        },
    )
    return top
