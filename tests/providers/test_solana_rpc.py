"""
Tests for the Solana JSON-RPC transport and the raw probe
"""

import json

import httpx
import pytest
from solders.hash import Hash

from seeker.core.recovery.errors import FailureClass, RpcError
from seeker.providers.solana import (
    SolanaRpcClient,
    extract_json_string_field,
    probe_send_transaction,
    truncate_for_log,
)

URL = "https://rpc.test"
BLOCKHASH = str(Hash.new_unique())


def rpc_result(result):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})


def make_client(handler):
    return SolanaRpcClient(URL, transport=httpx.MockTransport(handler))


class TestSolanaRpcClient:
    """Tests for request shape and failure mapping."""

    @pytest.mark.asyncio
    async def test_latest_blockhash(self):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return rpc_result({"context": {"slot": 1}, "value": {"blockhash": BLOCKHASH, "lastValidBlockHeight": 77}})

        client = make_client(handler)
        latest = await client.get_latest_blockhash()
        await client.close()

        assert latest.blockhash == BLOCKHASH
        assert latest.last_valid_block_height == 77
        assert seen["method"] == "getLatestBlockhash"
        assert seen["params"] == [{"commitment": "confirmed"}]

    @pytest.mark.asyncio
    async def test_send_transaction_params(self):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return rpc_result("5ig")

        client = make_client(handler)
        assert await client.send_transaction("AQID") == "5ig"
        assert seen["params"] == [
            "AQID",
            {"encoding": "base64", "skipPreflight": False, "preflightCommitment": "confirmed"},
        ]

    @pytest.mark.asyncio
    async def test_reads(self):
        def handler(request):
            method = json.loads(request.content)["method"]
            if method == "getSlot":
                return rpc_result(321)
            if method == "getBalance":
                return rpc_result({"context": {"slot": 1}, "value": 5_000})
            return rpc_result({"context": {"slot": 1}, "value": None})

        client = make_client(handler)
        assert await client.get_slot() == 321
        assert await client.get_balance("addr") == 5_000
        assert await client.get_account_info("addr") is None

    @pytest.mark.asyncio
    async def test_rpc_error_includes_logs(self):
        def handler(request):
            return httpx.Response(200, json={
                "jsonrpc": "2.0",
                "id": 1,
                "error": {
                    "code": -32002,
                    "message": "Transaction simulation failed: Error processing Instruction 1: custom program error: 0x178e",
                    "data": {"logs": ["Program log: AnchorError", "Program failed"]},
                },
            })

        client = make_client(handler)
        with pytest.raises(RpcError) as exc_info:
            await client.send_transaction("AQID")

        error = exc_info.value
        assert error.server_error_code == -32002
        assert error.failure_class == FailureClass.PROGRAM_ERROR
        assert "Program log: AnchorError" in error.reason

    @pytest.mark.asyncio
    async def test_unparseable_body(self):
        client = make_client(lambda request: httpx.Response(200, content=b"<html>bad gateway"))

        with pytest.raises(RpcError) as exc_info:
            await client.send_transaction("AQID")

        assert exc_info.value.reason.startswith("Unable to parse json")
        assert exc_info.value.failure_class == FailureClass.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_http_status(self):
        client = make_client(lambda request: httpx.Response(429))

        with pytest.raises(RpcError) as exc_info:
            await client.get_slot()

        assert exc_info.value.reason == "HTTP 429 Too Many Requests"
        assert exc_info.value.failure_class == FailureClass.RATE_LIMIT

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        client = make_client(handler)
        with pytest.raises(RpcError) as exc_info:
            await client.get_slot()

        assert exc_info.value.failure_class == FailureClass.TIMEOUT
        assert exc_info.value.context.recoverable is True

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        client = make_client(handler)
        with pytest.raises(RpcError) as exc_info:
            await client.get_balance("addr")

        assert exc_info.value.failure_class == FailureClass.CONNECTION

    @pytest.mark.asyncio
    async def test_health_check(self):
        client = make_client(lambda request: rpc_result("ok"))

        health = await client.health_check()

        assert health["status"] == "healthy"
        assert await client.ready() is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method,result",
        [
            ("get_latest_blockhash", "oops"),
            ("get_latest_blockhash", {"context": {"slot": 1}, "value": None}),
            ("get_balance", {"context": {"slot": 1}, "value": None}),
            ("get_balance", ["not", "an", "object"]),
            ("get_account_info", 42),
            ("get_account_info", {"context": {"slot": 1}, "value": "base64?"}),
        ],
    )
    async def test_unexpected_result_shape(self, method, result):
        client = make_client(lambda request: rpc_result(result))
        call = getattr(client, method)
        args = () if method == "get_latest_blockhash" else ("addr",)

        with pytest.raises(RpcError) as exc_info:
            await call(*args)

        assert exc_info.value.reason.startswith("Unable to parse json")
        assert exc_info.value.failure_class == FailureClass.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_undecodable_blockhash(self):
        client = make_client(
            lambda request: rpc_result({"context": {"slot": 1}, "value": {"blockhash": "not-a-hash"}})
        )

        with pytest.raises(RpcError) as exc_info:
            await client.get_latest_blockhash()

        assert "invalid blockhash" in exc_info.value.reason


class TestRawProbe:
    """Tests for the raw transport probe."""

    def test_extract_json_string_field(self):
        body = 'garbage {"jsonrpc":"2.0","result": "4sGjMW1sUnHzSxGspuhpqLDx6wiyjNtZ" trailing'
        assert extract_json_string_field(body, "result") == "4sGjMW1sUnHzSxGspuhpqLDx6wiyjNtZ"
        assert extract_json_string_field(body, "message") is None
        assert extract_json_string_field("", "result") is None

    def test_truncate_for_log(self):
        assert truncate_for_log(None) == "<empty>"
        assert truncate_for_log("short") == "short"
        long = "x" * 500
        assert truncate_for_log(long) == "x" * 400 + "..."

    @pytest.mark.asyncio
    async def test_probe_finds_signature(self):
        seen = {}

        def handler(request):
            seen["body"] = request.content.decode()
            return httpx.Response(200, content=b'{"jsonrpc":"2.0","result":"probe-sig","id":1}\x00\x00')

        probe = await probe_send_transaction(URL, "AQID", transport=httpx.MockTransport(handler))

        assert probe.attempted is True
        assert probe.was_successful is True
        assert probe.signature == "probe-sig"
        assert probe.http_status == 200
        assert '"sendTransaction"' in seen["body"]
        assert '"AQID"' in seen["body"]

    @pytest.mark.asyncio
    async def test_probe_reports_rpc_error(self):
        def handler(request):
            return httpx.Response(
                200, content=b'{"jsonrpc":"2.0","error":{"code":-32002,"message":"Blockhash not found"},"id":1}'
            )

        probe = await probe_send_transaction(URL, "AQID", transport=httpx.MockTransport(handler))

        assert probe.was_successful is False
        assert probe.rpc_error == "Blockhash not found"

    @pytest.mark.asyncio
    async def test_probe_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        probe = await probe_send_transaction(URL, "AQID", transport=httpx.MockTransport(handler))

        assert probe.attempted is True
        assert probe.network_error.startswith("ConnectError")
        assert probe.body_snippet == "<request exception>"

    @pytest.mark.asyncio
    async def test_probe_skips_non_http_urls(self):
        probe = await probe_send_transaction("wss://rpc.test", "AQID")

        assert probe.attempted is False
