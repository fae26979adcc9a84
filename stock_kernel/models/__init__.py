"""SQLAlchemy ORM models.  Importing this package registers every table."""

from stock_kernel.models.container import (
    BatchStateModel,
    ContainerInstanceModel,
    KegStateModel,
)
from stock_kernel.models.count_record import CountRecordModel

__all__ = [
    "BatchStateModel",
    "ContainerInstanceModel",
    "CountRecordModel",
    "KegStateModel",
]
