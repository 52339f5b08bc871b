"""
Error taxonomy for the block collector.

Fatal errors (config, unreachable source/sink) surface from the Collector.
Per-block errors (FetchError, StoreError) are raised by the adapters and
logged by workers; they never stop a run.
"""


class CollectorError(Exception):
    """Base class for all collector errors."""
    pass


class ConfigInvalid(CollectorError, ValueError):
    """Configuration or collect() arguments are invalid."""
    pass


class SourceUnreachable(CollectorError):
    """RPC endpoint could not be reached during construction."""
    pass


class SinkUnreachable(CollectorError):
    """Database could not be reached during construction."""
    pass


# Block Source errors

class FetchError(CollectorError):
    """Fetching a block from the source failed."""
    pass


class TransientTransportError(FetchError):
    """Network error, timeout or 5xx from the RPC endpoint."""
    pass


class NotFound(FetchError):
    """Block does not exist on the chain (yet)."""
    pass


class MalformedResponse(FetchError):
    """RPC response could not be decoded into a BlockRecord."""
    pass


class RPCError(FetchError):
    """Node answered with a JSON-RPC error object."""

    def __init__(self, message: str, code=None):
        super().__init__(message)
        self.code = code


# Block Sink errors

class StoreError(CollectorError):
    """Storing a block in the sink failed."""
    pass


class ConstraintViolation(StoreError):
    """Row rejected by a table constraint (e.g. duplicate number)."""
    pass


class TransientBackendError(StoreError):
    """Connection-level database failure, may succeed later."""
    pass


class PermanentBackendError(StoreError):
    """Any other database failure."""
    pass
