"""
SQL routing for named connections.

Exports: classify, StatementKind, QueryRouter, BoundQueries, TransactionCoordinator.
"""

from dbhub.engines.sql.classify import StatementKind, classify
from dbhub.engines.sql.router import BoundQueries, QueryRouter
from dbhub.engines.sql.transaction import TransactionCoordinator

__all__ = [
    "StatementKind",
    "classify",
    "QueryRouter",
    "BoundQueries",
    "TransactionCoordinator",
]
