"""Load reconciled time-log records for an iteration from a TFS / Azure DevOps server."""

from timelog_provider.core.data_models import (
    EvaluationContext,
    LinkQueryResult,
    TimeLogRecord,
    WorkItemLink,
)
from timelog_provider.core.errors import (
    AuthenticationError,
    ConfigurationError,
    DataConversionError,
    QueryExecutionError,
    ServerConnectionError,
    TimeLogProviderError,
)
from timelog_provider.core.reconciler import WorkItemReconciler
from timelog_provider.core.record_factory import DefaultRecordFactory, RecordFactory
from timelog_provider.provider import TfsTimeLogDataProvider

__version__ = "0.1.0"

__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "DataConversionError",
    "DefaultRecordFactory",
    "EvaluationContext",
    "LinkQueryResult",
    "QueryExecutionError",
    "RecordFactory",
    "ServerConnectionError",
    "TfsTimeLogDataProvider",
    "TimeLogProviderError",
    "TimeLogRecord",
    "WorkItemLink",
    "WorkItemReconciler",
]
