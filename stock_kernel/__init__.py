"""
Stock Kernel -- counting and anomaly-reconciliation core.

A library-style engine invoked in-process by the surrounding application:
- Five counting workflows (unit, container weight, bottle hybrid, keg, batch)
- Decimal-only weight and quantity arithmetic
- Rule-based anomaly detection with deterministic ordering
- Explicit reconciliation state machine (auto-commit vs. human confirmation)
- Single-owner lifecycle tracking for containers, kegs and batches
"""

__version__ = "0.1.0"
