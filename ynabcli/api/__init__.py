from ynabcli.api.client import YnabClient
from ynabcli.api.errors import (
    ClassifiedError,
    ErrorKind,
    RetriesExhaustedError,
    TransportError,
    YnabApiError,
)
from ynabcli.api.executor import RequestExecutor

__all__ = [
    "ClassifiedError",
    "ErrorKind",
    "RequestExecutor",
    "RetriesExhaustedError",
    "TransportError",
    "YnabApiError",
    "YnabClient",
]
