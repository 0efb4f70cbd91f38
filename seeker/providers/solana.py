"""
Solana JSON-RPC transport.

One SolanaRpcClient per endpoint. Every failure is raised as RpcError with a
free-text reason; callers classify the reason, they never inspect httpx
exceptions directly.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from solders.hash import Hash

from ..core.recovery.errors import RpcError
from .base import Provider

logger = logging.getLogger(__name__)

RAW_PROBE_BODY_LOG_LIMIT = 400


@dataclass
class LatestBlockhash:
    blockhash: str
    last_valid_block_height: Optional[int] = None


class SolanaRpcClient(Provider):
    """
    JSON-RPC client bound to a single endpoint.

    Usage:
        client = SolanaRpcClient("https://api.devnet.solana.com")
        blockhash = await client.get_latest_blockhash()
        signature = await client.send_transaction(tx_base64)
    """

    name = "solana-rpc"

    def __init__(
        self,
        url: str,
        commitment: str = "confirmed",
        timeout_s: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.commitment = commitment
        self.timeout_s = timeout_s
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._request_id = 0

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def ready(self) -> bool:
        return bool(self.url)

    async def health_check(self) -> Dict[str, Any]:
        try:
            result = await self._rpc_call("getHealth", [])
            return {"status": "healthy", "result": result, "url": self.url}
        except RpcError as exc:
            return {"status": "error", "reason": exc.reason, "url": self.url}

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        """Make a single RPC call and return its "result" member."""
        client = await self._get_client()
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        try:
            response = await client.post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
        except httpx.TimeoutException as e:
            raise RpcError(f"{method} timed out: {e!r}", endpoint=self.url)
        except httpx.HTTPError as e:
            raise RpcError(f"{method} connection failure ({type(e).__name__}): {e}", endpoint=self.url)

        if response.status_code >= 400:
            raise RpcError(
                f"HTTP {response.status_code} {response.reason_phrase}",
                endpoint=self.url,
                server_error_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RpcError(f"Unable to parse json: {e}", endpoint=self.url)

        if not isinstance(data, dict):
            raise RpcError("Unable to parse json: response is not an object", endpoint=self.url)

        if "error" in data and data["error"] is not None:
            error = data["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            logs = _simulation_logs(error)
            if logs:
                message = f"{message} | logs: {' | '.join(logs[-5:])}"
            raise RpcError(message, endpoint=self.url, server_error_code=code)

        if "result" not in data:
            raise RpcError("Unable to parse json: missing result", endpoint=self.url)

        return data["result"]

    async def get_latest_blockhash(self) -> LatestBlockhash:
        result = await self._rpc_call(
            "getLatestBlockhash",
            [{"commitment": self.commitment}],
        )
        value = self._context_value("getLatestBlockhash", result)
        if not isinstance(value, dict):
            raise RpcError(
                f"Unable to parse json: getLatestBlockhash returned {type(value).__name__}",
                endpoint=self.url,
            )
        blockhash = value.get("blockhash")
        if not blockhash or not isinstance(blockhash, str):
            raise RpcError("getLatestBlockhash returned no blockhash", endpoint=self.url)
        try:
            Hash.from_string(blockhash)
        except ValueError as e:
            raise RpcError(f"getLatestBlockhash returned an invalid blockhash: {e}", endpoint=self.url)
        height = value.get("lastValidBlockHeight")
        return LatestBlockhash(
            blockhash=blockhash,
            last_valid_block_height=height if isinstance(height, int) else None,
        )

    async def get_slot(self) -> int:
        result = await self._rpc_call("getSlot", [{"commitment": self.commitment}])
        if not isinstance(result, int) or isinstance(result, bool):
            raise RpcError(f"getSlot returned unexpected value: {result!r}", endpoint=self.url)
        return result

    async def get_balance(self, address: str) -> int:
        """Balance in lamports."""
        result = await self._rpc_call("getBalance", [address, {"commitment": self.commitment}])
        value = self._context_value("getBalance", result)
        if not isinstance(value, int) or isinstance(value, bool):
            raise RpcError(
                f"Unable to parse json: getBalance returned {type(value).__name__}",
                endpoint=self.url,
            )
        return value

    async def get_account_info(self, address: str) -> Optional[Dict[str, Any]]:
        """Account info, or None when the account does not exist."""
        result = await self._rpc_call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.commitment}],
        )
        value = self._context_value("getAccountInfo", result)
        if value is not None and not isinstance(value, dict):
            raise RpcError(
                f"Unable to parse json: getAccountInfo returned {type(value).__name__}",
                endpoint=self.url,
            )
        return value

    def _context_value(self, method: str, result: Any) -> Any:
        """The "value" member of an RpcResponse-with-context result."""
        if not isinstance(result, dict) or "value" not in result:
            raise RpcError(
                f"Unable to parse json: {method} returned {type(result).__name__}",
                endpoint=self.url,
            )
        return result["value"]

    async def send_transaction(self, transaction_base64: str, skip_preflight: bool = False) -> str:
        options = {
            "encoding": "base64",
            "skipPreflight": skip_preflight,
            "preflightCommitment": self.commitment,
        }
        result = await self._rpc_call("sendTransaction", [transaction_base64, options])
        if not isinstance(result, str) or not result:
            raise RpcError("No signature returned from sendTransaction", endpoint=self.url)
        return result


def _simulation_logs(error: Any) -> List[str]:
    if not isinstance(error, dict):
        return []
    data = error.get("data")
    if not isinstance(data, dict):
        return []
    logs = data.get("logs")
    return [str(line) for line in logs] if isinstance(logs, list) else []


# =============================================================================
# Raw transport probe
# =============================================================================

@dataclass
class RawProbeResult:
    """Outcome of resending the same payload outside the JSON client."""

    attempted: bool = False
    signature: Optional[str] = None
    http_status: Optional[int] = None
    network_error: Optional[str] = None
    rpc_error: Optional[str] = None
    body_snippet: str = "<empty>"

    @property
    def was_successful(self) -> bool:
        return bool(self.signature)


def extract_json_string_field(body: str, field_name: str) -> Optional[str]:
    """Find "field": "value" in a body that may not be valid JSON."""
    if not body or not field_name:
        return None
    match = re.search(rf'"{re.escape(field_name)}"\s*:\s*"([^"]+)"', body)
    return match.group(1) if match else None


def truncate_for_log(text: Optional[str], limit: int = RAW_PROBE_BODY_LOG_LIMIT) -> str:
    if not text:
        return "<empty>"
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


async def probe_send_transaction(
    url: str,
    transaction_base64: str,
    commitment: str = "confirmed",
    timeout_s: float = 20.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RawProbeResult:
    """
    Post sendTransaction with a hand-built body and scan the raw reply.

    Used when the JSON client reported an unparseable response: the node may
    have accepted the transaction, and a signature in the raw body proves it.
    """
    if not url.startswith(("http://", "https://")):
        return RawProbeResult()

    payload = (
        '{"jsonrpc":"2.0","id":1,"method":"sendTransaction","params":["'
        + transaction_base64
        + '",'
        + json.dumps(
            {"encoding": "base64", "skipPreflight": False, "preflightCommitment": commitment},
            separators=(",", ":"),
        )
        + "]}"
    )

    try:
        async with httpx.AsyncClient(timeout=timeout_s, transport=transport) as client:
            response = await client.post(
                url,
                content=payload.encode("utf-8"),
                headers={"Content-Type": "application/json"},
            )
    except httpx.HTTPError as e:
        return RawProbeResult(
            attempted=True,
            network_error=f"{type(e).__name__}: {e}",
            body_snippet="<request exception>",
        )

    body = response.text or ""
    return RawProbeResult(
        attempted=True,
        signature=extract_json_string_field(body, "result"),
        http_status=response.status_code,
        network_error=None if response.is_success else response.reason_phrase,
        rpc_error=extract_json_string_field(body, "message"),
        body_snippet=truncate_for_log(body),
    )
