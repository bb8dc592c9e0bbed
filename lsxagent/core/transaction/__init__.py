"""
Transaction: aplicación ordenada de un catálogo y su reporte.
"""

from lsxagent.core.transaction.report import Event, EventStatus, ResourceReport, ResourceStatus, RunReport
from lsxagent.core.transaction.transaction import Change, Transaction, TransactionState

__all__ = [
    "Change",
    "Event",
    "EventStatus",
    "ResourceReport",
    "ResourceStatus",
    "RunReport",
    "Transaction",
    "TransactionState",
]
