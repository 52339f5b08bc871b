"""
RPC client for fetching blocks from EVM nodes.

Implements the BlockSource capability over JSON-RPC:
- One shared aiohttp session (safe for concurrent workers)
- Optional cap on in-flight requests
- Optional retries with backoff for transient errors (off by default)
"""

import asyncio
from typing import Any, Optional

import aiohttp
import structlog

from .errors import MalformedResponse, NotFound, RPCError, TransientTransportError
from .models import BlockRecord

logger = structlog.get_logger()


class RPCClient:
    """
    Async JSON-RPC client for EVM nodes.

    Features:
    - Connection pooling via aiohttp
    - Request ID tracking
    - Error mapping onto the FetchError taxonomy
    - Retry with exponential backoff when max_retries > 1
    """

    def __init__(
        self,
        endpoint: str,
        max_concurrent: int = 10,
        timeout: float = 15,
        max_retries: int = 1,
        retry_backoff: float = 1.0,
    ):
        self.endpoint = endpoint
        self.max_concurrent = max_concurrent
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff

        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._request_id = 0
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        """Close the HTTP session. Safe to call more than once."""
        session, self._session = self._session, None
        if session is not None:
            await session.close()

    @property
    def closed(self) -> bool:
        return self._session is None

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def _call(self, method: str, params: list[Any]) -> Any:
        """Make a single RPC call, retrying transient failures."""
        if self._session is None:
            raise RuntimeError("RPCClient is not open")

        last_error: Optional[TransientTransportError] = None

        for attempt in range(self.max_retries):
            payload = {
                "jsonrpc": "2.0",
                "method": method,
                "params": params,
                "id": self._next_request_id(),
            }

            try:
                async with self._semaphore:
                    async with self._session.post(self.endpoint, json=payload) as resp:
                        if resp.status >= 500 or resp.status == 429:
                            raise TransientTransportError(
                                f"HTTP {resp.status}: {(await resp.text())[:200]}"
                            )
                        if resp.status != 200:
                            raise RPCError(f"HTTP {resp.status}: {(await resp.text())[:200]}")

                        try:
                            data = await resp.json(content_type=None)
                        except ValueError as e:
                            raise MalformedResponse(f"Invalid JSON from {method}: {e}") from e

                return self._unwrap(method, data)

            except TransientTransportError as e:
                last_error = e
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = TransientTransportError(f"{type(e).__name__}: {e}")

            if attempt + 1 < self.max_retries:
                wait_time = self.retry_backoff * 2 ** attempt  # 1, 2, 4 seconds
                logger.warning(
                    "RPC call failed, retrying",
                    method=method,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    wait_time=wait_time,
                    error=str(last_error),
                )
                await asyncio.sleep(wait_time)

        raise last_error

    @staticmethod
    def _unwrap(method: str, data: Any) -> Any:
        if not isinstance(data, dict):
            raise MalformedResponse(f"Unexpected {method} response: {data!r}"[:200])

        error = data.get("error")
        if error:
            if isinstance(error, dict):
                raise RPCError(f"RPC error: {error.get('message', error)}", code=error.get("code"))
            raise RPCError(f"RPC error: {error}")

        if "result" not in data:
            raise MalformedResponse(f"{method} response has no result")
        return data["result"]

    async def get_block_number(self) -> int:
        """Get the latest block number."""
        result = await self._call("eth_blockNumber", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise MalformedResponse(f"Invalid block number: {result!r}") from e

    async def get_block(self, block_number: int) -> dict:
        """Get raw block header (transaction hashes only) by number."""
        result = await self._call("eth_getBlockByNumber", [hex(block_number), False])
        if result is None:
            raise NotFound(f"Block {block_number} not found")
        if not isinstance(result, dict):
            raise MalformedResponse(f"Block {block_number}: unexpected result {result!r}"[:200])
        return result

    async def fetch(self, number: int) -> BlockRecord:
        """Fetch a block and decode it into a BlockRecord."""
        block = await self.get_block(number)
        try:
            record = BlockRecord.from_rpc(block)
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponse(f"Block {number}: {e}") from e

        if record.number != number:
            raise MalformedResponse(
                f"Asked for block {number}, node returned {record.number}"
            )
        return record
