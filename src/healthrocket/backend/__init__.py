from healthrocket.backend.auth_api import AuthAPI, AuthUser, Session
from healthrocket.backend.client import BackendClient, close_backend, get_backend, init_backend
from healthrocket.backend.errors import BackendError, ErrorCategory, classify_error, describe_error
from healthrocket.backend.query import QueryResult, TableQuery

__all__ = [
    "AuthAPI",
    "AuthUser",
    "BackendClient",
    "BackendError",
    "ErrorCategory",
    "QueryResult",
    "Session",
    "TableQuery",
    "classify_error",
    "close_backend",
    "describe_error",
    "get_backend",
    "init_backend",
]
