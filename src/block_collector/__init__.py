"""
Block collector: ingests a range of blocks from a JSON-RPC node into Postgres.
"""

from .collector import Collector
from .config import CollectorConfig
from .errors import (
    CollectorError,
    ConfigInvalid,
    ConstraintViolation,
    FetchError,
    MalformedResponse,
    NotFound,
    PermanentBackendError,
    RPCError,
    SinkUnreachable,
    SourceUnreachable,
    StoreError,
    TransientBackendError,
    TransientTransportError,
)
from .interfaces import BlockSink, BlockSource
from .models import BlockRecord, CollectResult
from .rpc import RPCClient
from .store import BlockStore

__all__ = [
    "BlockRecord",
    "BlockSink",
    "BlockSource",
    "BlockStore",
    "CollectResult",
    "Collector",
    "CollectorConfig",
    "CollectorError",
    "ConfigInvalid",
    "ConstraintViolation",
    "FetchError",
    "MalformedResponse",
    "NotFound",
    "PermanentBackendError",
    "RPCClient",
    "RPCError",
    "SinkUnreachable",
    "SourceUnreachable",
    "StoreError",
    "TransientBackendError",
    "TransientTransportError",
]
