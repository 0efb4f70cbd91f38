"""
Solana Submission Engine.

Sends transactions through the endpoint pool with per-endpoint retries,
failure classification, and a raw transport probe for responses the JSON
client could not parse.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Awaitable, Callable, Dict, Optional, Sequence, TypeVar

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from ...config import EngineOptions
from ...providers.solana import RawProbeResult, SolanaRpcClient, probe_send_transaction
from ..program.errors import describe_program_error
from ..recovery.errors import (
    AssemblyError,
    FailureClass,
    RpcError,
    classify_failure_reason,
)
from .endpoints import EndpointDescriptor, EndpointPool
from .models import SubmissionAttempt, SubmissionResult
from .tx_builder import TransactionAssembler, TransactionSigner

logger = logging.getLogger(__name__)

T = TypeVar("T")

ClientFactory = Callable[[EndpointDescriptor], SolanaRpcClient]
RawProbe = Callable[[str, str], Awaitable[RawProbeResult]]


class SubmissionEngine:
    """
    Resilient transaction submission across the endpoint pool.

    Endpoints are tried strictly in priority order, one at a time. Each gets
    up to max_attempts_per_endpoint sends, every one with a fresh blockhash.
    Transient failures back off and retry on the same endpoint; fatal ones
    move to the next endpoint; assembly failures abort the send.

    Usage:
        engine = SubmissionEngine(EndpointPool.from_urls(primary, fallback))
        result = await engine.send(instructions, wallet.pubkey, [wallet])
        if result.succeeded:
            print(result.signature)
    """

    def __init__(
        self,
        pool: EndpointPool,
        options: Optional[EngineOptions] = None,
        client_factory: Optional[ClientFactory] = None,
        raw_probe: Optional[RawProbe] = None,
        assembler: Optional[TransactionAssembler] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._pool = pool
        self._options = options or EngineOptions()
        self._client_factory = client_factory or self._default_client
        self._raw_probe = raw_probe or self._default_probe
        self._assembler = assembler or TransactionAssembler()
        self._sleep = sleep
        self._clients: Dict[str, SolanaRpcClient] = {}

    @property
    def pool(self) -> EndpointPool:
        return self._pool

    def _default_client(self, endpoint: EndpointDescriptor) -> SolanaRpcClient:
        return SolanaRpcClient(
            endpoint.url,
            commitment=self._options.commitment,
            timeout_s=self._options.request_timeout_seconds,
        )

    async def _default_probe(self, url: str, transaction_base64: str) -> RawProbeResult:
        return await probe_send_transaction(
            url,
            transaction_base64,
            commitment=self._options.commitment,
            timeout_s=self._options.raw_probe_timeout_seconds,
        )

    def _client_for(self, endpoint: EndpointDescriptor) -> SolanaRpcClient:
        client = self._clients.get(endpoint.key)
        if client is None:
            client = self._client_factory(endpoint)
            self._clients[endpoint.key] = client
        return client

    async def set_wallet_endpoint(self, url: Optional[str]) -> None:
        """Swap the wallet-supplied endpoint, dropping any client bound to the old one."""
        known = {endpoint.key for endpoint in self._pool}
        self._pool.set_wallet_endpoint(url)
        current = {endpoint.key for endpoint in self._pool}
        for key in known - current:
            client = self._clients.pop(key, None)
            if client is not None:
                await client.close()

    async def close(self) -> None:
        """Close every HTTP client the engine opened."""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.close()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def send(
        self,
        instructions: Sequence[Instruction],
        fee_payer: Pubkey,
        signers: Sequence[TransactionSigner],
    ) -> SubmissionResult:
        """
        Assemble, sign and send a transaction.

        Never raises: every failure is reported on the returned
        SubmissionResult, with the last non-empty reason seen.
        """
        result = SubmissionResult()
        if not instructions:
            result.failure_reason = "No instructions to send"
            return result
        if not self._pool:
            result.failure_reason = "No RPC endpoints configured"
            result.failure_class = FailureClass.CONNECTION
            return result

        max_attempts = max(1, self._options.max_attempts_per_endpoint)
        last_reason: Optional[str] = None

        for endpoint in self._pool:
            label = endpoint.label
            client = self._client_for(endpoint)
            probed = False

            for attempt in range(1, max_attempts + 1):
                try:
                    latest = await client.get_latest_blockhash()
                except RpcError as e:
                    last_reason = e.reason or last_reason
                    logger.warning(f"[{label}] Blockhash fetch failed, skipping endpoint: {e.reason}")
                    break
                except Exception as e:
                    last_reason = f"Unable to parse json: getLatestBlockhash ({type(e).__name__}: {e})"
                    logger.warning(f"[{label}] Blockhash fetch failed, skipping endpoint: {last_reason}")
                    break

                try:
                    wire = await self._assembler.build(
                        instructions, fee_payer, signers, latest.blockhash
                    )
                except AssemblyError as e:
                    logger.error(
                        f"[{label}] Transaction assembly failed: signer={e.signer} "
                        f"step={e.step}: {e.message}"
                    )
                    result.failure_reason = e.message
                    result.failure_class = FailureClass.ASSEMBLY
                    return result
                except Exception as e:
                    # Wallet rejections land here; re-prompting on another
                    # endpoint would ask the user again.
                    logger.error(f"[{label}] Signing failed: {type(e).__name__}: {e}")
                    result.failure_reason = f"Signing failed: {e}"
                    result.failure_class = FailureClass.UNKNOWN
                    return result

                payload = base64.b64encode(wire).decode("ascii")
                logger.info(f"[{label}] Sending transaction (attempt {attempt}/{max_attempts})")

                try:
                    signature = await client.send_transaction(payload)
                    reason = ""
                except RpcError as e:
                    signature = None
                    reason = e.reason
                except Exception as e:
                    signature = None
                    reason = f"{type(e).__name__}: {e}"

                if signature:
                    logger.info(f"[{label}] Transaction accepted: {signature}")
                    result.signature = signature
                    result.endpoint = endpoint
                    result.failure_reason = None
                    result.failure_class = None
                    return result

                classification = classify_failure_reason(reason)
                record = SubmissionAttempt(
                    endpoint=endpoint,
                    attempt_number=attempt,
                    failure_reason=reason or None,
                    failure_class=classification.failure_class,
                )
                result.attempts.append(record)
                if reason:
                    last_reason = reason
                result.failure_class = classification.failure_class
                if classification.program_error_code is not None:
                    result.program_error_code = classification.program_error_code
                    logger.warning(
                        f"[{label}] Program rejected transaction: "
                        f"{describe_program_error(classification.program_error_code)}"
                    )

                logger.warning(
                    f"[{label}] Send attempt {attempt}/{max_attempts} failed "
                    f"({classification.failure_class.value}, "
                    f"{'transient' if classification.transient else 'fatal'}): {reason or '<empty>'}"
                )

                if classification.is_malformed_response and not probed:
                    probed = True
                    record.probed = True
                    probe = await self._raw_probe(endpoint.url, payload)
                    logger.warning(
                        f"[{label}] Raw probe: attempted={probe.attempted} "
                        f"status={probe.http_status} network_error={probe.network_error} "
                        f"rpc_error={probe.rpc_error} body={probe.body_snippet}"
                    )
                    if probe.was_successful:
                        logger.info(f"[{label}] Raw probe recovered signature {probe.signature}")
                        result.signature = probe.signature
                        result.endpoint = endpoint
                        result.failure_reason = None
                        result.failure_class = None
                        return result
                    if probe.rpc_error:
                        last_reason = probe.rpc_error

                if classification.failure_class is FailureClass.ASSEMBLY:
                    logger.error(f"[{label}] Transaction layout rejected, not retrying: {reason}")
                    result.failure_reason = reason
                    return result

                if not classification.transient:
                    break

                if attempt < max_attempts:
                    await self._sleep(self._options.backoff_base_ms * attempt / 1000.0)

        result.failure_reason = last_reason or "Transaction submission failed on every RPC endpoint"
        logger.error(
            f"Transaction failed after {len(result.attempts)} attempt(s): {result.failure_reason}"
        )
        return result

    async def send_signature(
        self,
        instructions: Sequence[Instruction],
        fee_payer: Pubkey,
        signers: Sequence[TransactionSigner],
    ) -> Optional[str]:
        """Send and return only the signature (None on failure)."""
        result = await self.send(instructions, fee_payer, signers)
        return result.signature

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def _with_failover(
        self,
        operation: str,
        call: Callable[[SolanaRpcClient], Awaitable[T]],
    ) -> T:
        last_error: Optional[RpcError] = None
        for endpoint in self._pool:
            try:
                return await call(self._client_for(endpoint))
            except RpcError as e:
                last_error = e
                logger.warning(f"[{endpoint.label}] {operation} failed: {e.reason}")
            except Exception as e:
                last_error = RpcError(
                    f"Unable to parse json: {operation} ({type(e).__name__}: {e})",
                    endpoint=endpoint.url,
                )
                logger.warning(f"[{endpoint.label}] {operation} failed: {last_error.reason}")
        if last_error is not None:
            raise last_error
        raise RpcError(f"{operation}: no RPC endpoints configured")

    async def get_slot(self) -> int:
        return await self._with_failover("getSlot", lambda client: client.get_slot())

    async def get_balance(self, address: Pubkey) -> int:
        return await self._with_failover(
            "getBalance", lambda client: client.get_balance(str(address))
        )

    async def account_exists(self, address: Pubkey) -> bool:
        info = await self._with_failover(
            "getAccountInfo", lambda client: client.get_account_info(str(address))
        )
        return info is not None


__all__ = [
    "SubmissionEngine",
    "ClientFactory",
    "RawProbe",
]
