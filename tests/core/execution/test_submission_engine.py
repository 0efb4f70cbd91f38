"""
Tests for the Submission Engine

Tests for per-endpoint retries, failover, raw probing and the read helpers.
"""

import base64
import json

import httpx
import pytest
from unittest.mock import AsyncMock
from solders.hash import Hash
from solders.keypair import Keypair

from seeker.config import EngineOptions
from seeker.core.execution import (
    EndpointPool,
    LocalKeypairSigner,
    SubmissionEngine,
)
from seeker.core.execution.tx_builder import parse_wire_transaction
from seeker.core.program.instructions import build_transfer
from seeker.core.recovery.errors import FailureClass, RpcError
from seeker.providers.solana import LatestBlockhash, RawProbeResult, SolanaRpcClient

PRIMARY = "https://primary.rpc"
FALLBACK = "https://fallback.rpc"


class FakeRpcClient:
    """Scripted stand-in for SolanaRpcClient."""

    def __init__(self, url, sends=None, blockhash_error=None):
        self.url = url
        self.sends = list(sends or [])
        self.blockhash_error = blockhash_error
        self.payloads = []
        self.closed = False
        self.slot = 1_000
        self.balances = {}
        self.accounts = {}
        self.read_error = None

    async def get_latest_blockhash(self):
        if self.blockhash_error:
            raise self.blockhash_error
        return LatestBlockhash(blockhash=str(Hash.new_unique()), last_valid_block_height=10)

    async def send_transaction(self, transaction_base64, skip_preflight=False):
        self.payloads.append(transaction_base64)
        outcome = self.sends.pop(0) if self.sends else RpcError("unscripted send")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def get_slot(self):
        if self.read_error:
            raise self.read_error
        return self.slot

    async def get_balance(self, address):
        if self.read_error:
            raise self.read_error
        return self.balances.get(address, 0)

    async def get_account_info(self, address):
        if self.read_error:
            raise self.read_error
        return self.accounts.get(address)

    async def close(self):
        self.closed = True

    @property
    def send_count(self):
        return len(self.payloads)


@pytest.fixture
def payer():
    return Keypair()


@pytest.fixture
def instructions(payer):
    return [build_transfer(payer.pubkey(), Keypair().pubkey(), 5_000)]


@pytest.fixture
def sleep():
    return AsyncMock()


def make_engine(clients, sleep, raw_probe=None, **option_overrides):
    options = EngineOptions(**option_overrides)
    pool = EndpointPool.from_urls(*clients.keys())
    return SubmissionEngine(
        pool,
        options,
        client_factory=lambda endpoint: clients[endpoint.url],
        raw_probe=raw_probe or AsyncMock(return_value=RawProbeResult(attempted=True)),
        sleep=sleep,
    )


# =============================================================================
# Send
# =============================================================================

class TestSubmissionEngineSend:
    """Tests for the send algorithm."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, payer, instructions, sleep):
        primary = FakeRpcClient(PRIMARY, sends=["sig-1"])
        engine = make_engine({PRIMARY: primary}, sleep)

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.succeeded
        assert result.signature == "sig-1"
        assert result.attempts == []
        assert primary.send_count == 1
        sleep.assert_not_awaited()

        # The payload is a signed transaction in base64
        signatures, _message = parse_wire_transaction(base64.b64decode(primary.payloads[0]))
        assert len(signatures) == 1

    @pytest.mark.asyncio
    async def test_retry_bound_with_persistent_timeouts(self, payer, instructions, sleep):
        """Every endpoint times out on every attempt: endpoints x attempts sends, then None."""
        timeout = lambda: RpcError("sendTransaction timed out: ReadTimeout()")
        primary = FakeRpcClient(PRIMARY, sends=[timeout(), timeout(), timeout()])
        fallback = FakeRpcClient(FALLBACK, sends=[timeout(), timeout(), timeout()])
        engine = make_engine({PRIMARY: primary, FALLBACK: fallback}, sleep)

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.signature is None
        assert len(result.attempts) == 2 * 2
        assert primary.send_count == 2
        assert fallback.send_count == 2
        assert result.failure_class == FailureClass.TIMEOUT
        assert "timed out" in result.failure_reason
        # Backoff between in-endpoint attempts only: 300ms x attempt 1
        assert [call.args[0] for call in sleep.await_args_list] == [0.3, 0.3]

    @pytest.mark.asyncio
    async def test_send_signature_is_none_after_exhaustion(self, payer, instructions, sleep):
        primary = FakeRpcClient(PRIMARY, sends=[RpcError("HTTP 429 Too Many Requests")] * 2)
        engine = make_engine({PRIMARY: primary}, sleep)

        assert await engine.send_signature(instructions, payer.pubkey(), [LocalKeypairSigner(payer)]) is None
        assert primary.send_count == 2

    @pytest.mark.asyncio
    async def test_transient_then_success_on_same_endpoint(self, payer, instructions, sleep):
        primary = FakeRpcClient(PRIMARY, sends=[RpcError("HTTP 502 Bad Gateway"), "sig-2"])
        fallback = FakeRpcClient(FALLBACK)
        engine = make_engine({PRIMARY: primary, FALLBACK: fallback}, sleep)

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.signature == "sig-2"
        assert result.endpoint.url == PRIMARY
        assert len(result.attempts) == 1
        assert fallback.send_count == 0

    @pytest.mark.asyncio
    async def test_fatal_failure_moves_to_next_endpoint(self, payer, instructions, sleep):
        primary = FakeRpcClient(
            PRIMARY,
            sends=[RpcError("Transaction simulation failed: custom program error: 0x1771")],
        )
        fallback = FakeRpcClient(FALLBACK, sends=["sig-3"])
        engine = make_engine({PRIMARY: primary, FALLBACK: fallback}, sleep)

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.signature == "sig-3"
        assert primary.send_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_program_error_code_is_reported(self, payer, instructions, sleep):
        rejection = "Transaction simulation failed: custom program error: 0x178e"
        primary = FakeRpcClient(PRIMARY, sends=[RpcError(rejection)])
        fallback = FakeRpcClient(FALLBACK, sends=[RpcError(rejection)])
        engine = make_engine({PRIMARY: primary, FALLBACK: fallback}, sleep)

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.signature is None
        assert result.program_error_code == 6030
        assert result.failure_class == FailureClass.PROGRAM_ERROR
        assert len(result.attempts) == 2

    @pytest.mark.asyncio
    async def test_sanitize_failure_aborts_the_send(self, payer, instructions, sleep):
        primary = FakeRpcClient(PRIMARY, sends=[RpcError("failed to sanitize accounts offsets")])
        fallback = FakeRpcClient(FALLBACK, sends=["never"])
        engine = make_engine({PRIMARY: primary, FALLBACK: fallback}, sleep)

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.signature is None
        assert result.failure_class == FailureClass.ASSEMBLY
        assert fallback.send_count == 0

    @pytest.mark.asyncio
    async def test_local_assembly_error_aborts_without_sending(self, payer, instructions, sleep):
        primary = FakeRpcClient(PRIMARY, sends=["never"])
        engine = make_engine({PRIMARY: primary}, sleep)

        # Signed by a key that is not the fee payer
        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(Keypair())])

        assert result.signature is None
        assert result.failure_class == FailureClass.ASSEMBLY
        assert primary.send_count == 0

    @pytest.mark.asyncio
    async def test_blockhash_failure_skips_endpoint_without_counting(self, payer, instructions, sleep):
        primary = FakeRpcClient(PRIMARY, blockhash_error=RpcError("getLatestBlockhash timed out"))
        fallback = FakeRpcClient(FALLBACK, sends=["sig-4"])
        engine = make_engine({PRIMARY: primary, FALLBACK: fallback}, sleep)

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.signature == "sig-4"
        assert result.attempts == []
        assert primary.send_count == 0

    @pytest.mark.asyncio
    async def test_empty_reason_is_retried(self, payer, instructions, sleep):
        primary = FakeRpcClient(PRIMARY, sends=[RpcError(""), "sig-5"])
        engine = make_engine({PRIMARY: primary}, sleep)

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.signature == "sig-5"
        assert primary.send_count == 2

    @pytest.mark.asyncio
    async def test_no_instructions(self, payer, sleep):
        engine = make_engine({PRIMARY: FakeRpcClient(PRIMARY)}, sleep)

        result = await engine.send([], payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.signature is None
        assert result.failure_reason == "No instructions to send"

    @pytest.mark.asyncio
    async def test_signer_exception_is_caught(self, payer, instructions, sleep):
        from seeker.core.execution.tx_builder import ExternalSigner

        async def reject(_wire):
            raise RuntimeError("User rejected the request")

        primary = FakeRpcClient(PRIMARY)
        engine = make_engine({PRIMARY: primary}, sleep)

        result = await engine.send(instructions, payer.pubkey(), [ExternalSigner(payer.pubkey(), reject)])

        assert result.signature is None
        assert "User rejected" in result.failure_reason
        assert primary.send_count == 0


# =============================================================================
# Raw probe
# =============================================================================

class TestRawProbe:
    """Tests for the unparseable-response probe."""

    @pytest.mark.asyncio
    async def test_probe_signature_short_circuits(self, payer, instructions, sleep):
        primary = FakeRpcClient(PRIMARY, sends=[RpcError("Unable to parse json: Expecting value")])
        fallback = FakeRpcClient(FALLBACK, sends=["never"])
        probe = AsyncMock(return_value=RawProbeResult(attempted=True, signature="probe-sig", http_status=200))
        engine = make_engine({PRIMARY: primary, FALLBACK: fallback}, sleep, raw_probe=probe)

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.signature == "probe-sig"
        probe.assert_awaited_once_with(PRIMARY, primary.payloads[0])
        assert fallback.send_count == 0
        assert result.attempts[0].probed is True

    @pytest.mark.asyncio
    async def test_probe_runs_once_per_endpoint(self, payer, instructions, sleep):
        parse_error = lambda: RpcError("Unable to parse json")
        primary = FakeRpcClient(PRIMARY, sends=[parse_error(), parse_error()])
        fallback = FakeRpcClient(FALLBACK, sends=[parse_error(), "sig-6"])
        probe = AsyncMock(return_value=RawProbeResult(attempted=True, http_status=200, body_snippet="<html>"))
        engine = make_engine({PRIMARY: primary, FALLBACK: fallback}, sleep, raw_probe=probe)

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.signature == "sig-6"
        assert [call.args[0] for call in probe.await_args_list] == [PRIMARY, FALLBACK]
        assert primary.send_count == 2

    @pytest.mark.asyncio
    async def test_probe_not_run_for_other_failures(self, payer, instructions, sleep):
        primary = FakeRpcClient(PRIMARY, sends=[RpcError("The header part of a frame could not be read"), "sig-7"])
        probe = AsyncMock()
        engine = make_engine({PRIMARY: primary}, sleep, raw_probe=probe)

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.signature == "sig-7"
        probe.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_probe_rpc_error_becomes_reason(self, payer, instructions, sleep):
        primary = FakeRpcClient(PRIMARY, sends=[RpcError("Unable to parse json")] * 2)
        probe = AsyncMock(return_value=RawProbeResult(attempted=True, http_status=200, rpc_error="Blockhash not found"))
        engine = make_engine({PRIMARY: primary}, sleep, raw_probe=probe)

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.signature is None
        assert result.failure_reason == "Unable to parse json"
        probe.assert_awaited_once()


# =============================================================================
# Reads and lifecycle
# =============================================================================

class TestSubmissionEngineReads:
    """Tests for read helpers with failover."""

    @pytest.mark.asyncio
    async def test_get_slot_fails_over(self, sleep):
        primary = FakeRpcClient(PRIMARY)
        primary.read_error = RpcError("getSlot connection failure (ConnectError): refused")
        fallback = FakeRpcClient(FALLBACK)
        fallback.slot = 4242
        engine = make_engine({PRIMARY: primary, FALLBACK: fallback}, sleep)

        assert await engine.get_slot() == 4242

    @pytest.mark.asyncio
    async def test_read_raises_last_error_when_all_fail(self, sleep):
        primary = FakeRpcClient(PRIMARY)
        primary.read_error = RpcError("primary down")
        fallback = FakeRpcClient(FALLBACK)
        fallback.read_error = RpcError("fallback down")
        engine = make_engine({PRIMARY: primary, FALLBACK: fallback}, sleep)

        with pytest.raises(RpcError) as exc_info:
            await engine.get_balance(Keypair().pubkey())

        assert exc_info.value.reason == "fallback down"

    @pytest.mark.asyncio
    async def test_account_exists(self, sleep):
        owner = Keypair().pubkey()
        primary = FakeRpcClient(PRIMARY)
        primary.accounts[str(owner)] = {"lamports": 1}
        engine = make_engine({PRIMARY: primary}, sleep)

        assert await engine.account_exists(owner) is True
        assert await engine.account_exists(Keypair().pubkey()) is False

    @pytest.mark.asyncio
    async def test_close_closes_clients(self, payer, instructions, sleep):
        primary = FakeRpcClient(PRIMARY, sends=["sig"])
        engine = make_engine({PRIMARY: primary}, sleep)
        await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        await engine.close()

        assert primary.closed is True


# =============================================================================
# Malformed node replies
# =============================================================================

def node(latest_blockhash=None, balance=None, signature="node-sig"):
    """httpx transport answering like a Solana node, with overridable results."""

    def handler(request):
        method = json.loads(request.content)["method"]
        if method == "getLatestBlockhash":
            result = latest_blockhash if latest_blockhash is not None else {
                "context": {"slot": 1},
                "value": {"blockhash": str(Hash.new_unique()), "lastValidBlockHeight": 9},
            }
        elif method == "getBalance":
            result = balance if balance is not None else {"context": {"slot": 1}, "value": 7_000}
        else:
            result = signature
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})

    return httpx.MockTransport(handler)


def make_http_engine(transports, sleep):
    pool = EndpointPool.from_urls(*transports.keys())
    return SubmissionEngine(
        pool,
        EngineOptions(),
        client_factory=lambda endpoint: SolanaRpcClient(endpoint.url, transport=transports[endpoint.url]),
        raw_probe=AsyncMock(return_value=RawProbeResult(attempted=True)),
        sleep=sleep,
    )


class TestMalformedReplies:
    """A bad reply from one node never escapes the engine."""

    @pytest.mark.asyncio
    async def test_blockhash_of_wrong_type_falls_over(self, payer, instructions, sleep):
        engine = make_http_engine(
            {PRIMARY: node(latest_blockhash="oops"), FALLBACK: node(signature="fallback-sig")},
            sleep,
        )

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])
        await engine.close()

        assert result.signature == "fallback-sig"
        assert result.endpoint.url == FALLBACK

    @pytest.mark.asyncio
    async def test_undecodable_blockhash_falls_over(self, payer, instructions, sleep):
        engine = make_http_engine(
            {
                PRIMARY: node(latest_blockhash={"context": {"slot": 1}, "value": {"blockhash": "not-a-hash"}}),
                FALLBACK: node(signature="fallback-sig"),
            },
            sleep,
        )

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.signature == "fallback-sig"
        assert result.attempts == []

    @pytest.mark.asyncio
    async def test_every_node_malformed_is_a_failed_result(self, payer, instructions, sleep):
        engine = make_http_engine(
            {PRIMARY: node(latest_blockhash="oops"), FALLBACK: node(latest_blockhash=[1, 2])},
            sleep,
        )

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.signature is None
        assert result.failure_reason.startswith("Unable to parse json")

    @pytest.mark.asyncio
    async def test_balance_without_value_falls_over(self, sleep):
        engine = make_http_engine(
            {PRIMARY: node(balance={"context": {"slot": 1}, "value": None}), FALLBACK: node()},
            sleep,
        )

        assert await engine.get_balance(Keypair().pubkey()) == 7_000

    @pytest.mark.asyncio
    async def test_balance_malformed_everywhere_raises_rpc_error(self, sleep):
        engine = make_http_engine({PRIMARY: node(balance={"context": {"slot": 1}, "value": None})}, sleep)

        with pytest.raises(RpcError) as exc_info:
            await engine.get_balance(Keypair().pubkey())

        assert exc_info.value.reason.startswith("Unable to parse json")

    @pytest.mark.asyncio
    async def test_unexpected_client_exception_is_contained(self, payer, instructions, sleep):
        primary = FakeRpcClient(PRIMARY, blockhash_error=AttributeError("'str' object has no attribute 'get'"))
        primary.read_error = TypeError("int() argument must be a string")
        fallback = FakeRpcClient(FALLBACK, sends=["sig-6"])
        fallback.slot = 99
        engine = make_engine({PRIMARY: primary, FALLBACK: fallback}, sleep)

        result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])

        assert result.signature == "sig-6"
        assert await engine.get_slot() == 99
