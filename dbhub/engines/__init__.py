from dbhub.engines.sql import BoundQueries, QueryRouter, TransactionCoordinator

__all__ = ["QueryRouter", "BoundQueries", "TransactionCoordinator"]
