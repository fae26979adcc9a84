"""
stock_engines -- Pure calculation layer for stock counting.

Registry, unit conversion, anomaly detection and container scoring.
Zero I/O: every engine receives its inputs (including ``as_of``) from the
caller and returns frozen results.
"""

from stock_engines.anomaly import AnomalyDetector, DetectionContext
from stock_engines.containers import (
    ContainerRecommendation,
    RecommendationTier,
    compute_verification_status,
    rank_containers,
)
from stock_engines.conversion import (
    QUANTITY_PRECISION,
    BottleEquivalent,
    BottleQuantity,
    ConversionContext,
    CountConversion,
    KegFreshness,
    KegFreshnessStatus,
    KegVolume,
    NetWeight,
    WeightQuantity,
    batch_expiry,
    batch_label,
    bottle_equivalent,
    bottle_quantity,
    convert_submission,
    keg_freshness,
    keg_volume,
    net_weight,
    quantity_from_weight,
)
from stock_engines.registry import WorkflowBounds, WorkflowDefinition, WorkflowRegistry

__all__ = [
    "AnomalyDetector",
    "DetectionContext",
    "ContainerRecommendation",
    "RecommendationTier",
    "compute_verification_status",
    "rank_containers",
    "QUANTITY_PRECISION",
    "BottleEquivalent",
    "BottleQuantity",
    "ConversionContext",
    "CountConversion",
    "KegFreshness",
    "KegFreshnessStatus",
    "KegVolume",
    "NetWeight",
    "WeightQuantity",
    "batch_expiry",
    "batch_label",
    "bottle_equivalent",
    "bottle_quantity",
    "convert_submission",
    "keg_freshness",
    "keg_volume",
    "net_weight",
    "quantity_from_weight",
    "WorkflowBounds",
    "WorkflowDefinition",
    "WorkflowRegistry",
]
