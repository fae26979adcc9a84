"""
Inventory item domain types (``stock_kernel.domain.items``).

Responsibility
--------------
Pure value objects describing a countable good and the counting workflow
that applies to it.  Physical parameters for every workflow live on the
item; only the parameters of the active workflow are consulted.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Exactly one ``workflow`` is active per item.
* Items are never deleted; ``deactivate()`` returns a soft-deactivated copy.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum


class CountingWorkflow(str, Enum):
    """The five physical counting modalities."""

    UNIT_COUNT = "unit_count"              # Manual counting
    CONTAINER_WEIGHT = "container_weight"  # Bulk items in labelled containers
    BOTTLE_HYBRID = "bottle_hybrid"        # Full bottles + weighed partials
    KEG_WEIGHT = "keg_weight"              # Beer kegs, always weighed
    BATCH_WEIGHT = "batch_weight"          # In-house prep with use-by dates


@dataclass(frozen=True)
class InventoryItem:
    """A countable good and its physical configuration.

    Weights are grams, volumes millilitres (bottles) or litres (kegs),
    temperatures degrees Celsius.
    """

    item_id: str
    name: str
    workflow: CountingWorkflow
    recipe_unit: str = "units"
    par_level_low: Decimal = Decimal("0")
    par_level_high: Decimal = Decimal("0")
    is_active: bool = True

    # Container / batch weighing
    typical_unit_weight_grams: Decimal | None = None
    default_container_category: str | None = None

    # Bottles
    bottle_volume_ml: Decimal | None = None
    full_bottle_weight_grams: Decimal | None = None
    empty_bottle_weight_grams: Decimal | None = None

    # Kegs
    keg_volume_liters: Decimal | None = None
    empty_keg_weight_grams: Decimal | None = None
    keg_freshness_days: int | None = None
    keg_storage_temp_min: Decimal | None = None
    keg_storage_temp_max: Decimal | None = None

    # Batches
    batch_use_by_days: int | None = None
    batch_naming_pattern: str | None = None

    def deactivate(self) -> InventoryItem:
        """Return a soft-deactivated copy."""
        return replace(self, is_active=False)

    @property
    def is_weighed(self) -> bool:
        return self.workflow is not CountingWorkflow.UNIT_COUNT
