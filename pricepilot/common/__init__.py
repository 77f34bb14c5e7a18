"""Common infrastructure: config, storage, audit log, proxies and HTTP."""

from .audit import AuditAction, AuditEvent, AuditSink
from .config import Config
from .database import get_connection, init_db
from .errors import FailureKind, MarketValueError, ValidationError
from .http_client import FetchResult, ResilientFetcher, classify_response
from .logging import setup_logging
from .proxy_pool import ProxyPool, ProxyRecord, ProxyState

__all__ = [
    "AuditAction",
    "AuditEvent",
    "AuditSink",
    "Config",
    "FailureKind",
    "FetchResult",
    "MarketValueError",
    "ProxyPool",
    "ProxyRecord",
    "ProxyState",
    "ResilientFetcher",
    "ValidationError",
    "classify_response",
    "get_connection",
    "init_db",
    "setup_logging",
]
