from __future__ import annotations

import json

import httpx
import pytest

from ticketflow.settlement.chains import (
    ChainRpcError,
    EscrowRelayerWriter,
    EthereumChainReader,
    SolanaChainReader,
)


def _rpc_client(results: dict[str, object], seen: list[dict] | None = None) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if seen is not None:
            seen.append(body)
        method = body["method"]
        if method not in results:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601}})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": results[method]})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_ethereum_reader_converts_wei_and_reads_receipt():
    seen: list[dict] = []
    client = _rpc_client(
        {
            "eth_getTransactionByHash": {
                "from": "0xHolder",
                "to": "0xOrganizerWallet",
                "value": hex(10**16),
            },
            "eth_getTransactionReceipt": {"status": "0x1"},
        },
        seen,
    )
    reader = EthereumChainReader("https://rpc.test", client=client)

    tx = await reader.get_transaction("0xabc")

    assert tx.confirmed and tx.succeeded
    assert tx.amount == pytest.approx(0.01)
    assert tx.recipients == ("0xOrganizerWallet",)
    assert tx.sender == "0xHolder"
    assert [body["method"] for body in seen] == ["eth_getTransactionByHash", "eth_getTransactionReceipt"]
    assert reader.same_address("0xORGANIZERWALLET", "0xorganizerwallet")
    await reader.close()


@pytest.mark.asyncio
async def test_ethereum_reader_reports_pending_and_reverted():
    pending = EthereumChainReader(
        "https://rpc.test",
        client=_rpc_client({"eth_getTransactionByHash": {"to": "0x1", "value": "0x0"}, "eth_getTransactionReceipt": None}),
    )
    reverted = EthereumChainReader(
        "https://rpc.test",
        client=_rpc_client(
            {"eth_getTransactionByHash": {"to": "0x1", "value": "0x0"}, "eth_getTransactionReceipt": {"status": "0x0"}}
        ),
    )

    pending_tx = await pending.get_transaction("0xabc")
    reverted_tx = await reverted.get_transaction("0xabc")

    assert not pending_tx.confirmed
    assert reverted_tx.confirmed and not reverted_tx.succeeded


@pytest.mark.asyncio
async def test_ethereum_reader_returns_none_for_unknown_hash():
    reader = EthereumChainReader("https://rpc.test", client=_rpc_client({"eth_getTransactionByHash": None}))
    assert await reader.get_transaction("0xmissing") is None


@pytest.mark.asyncio
async def test_rpc_error_payload_raises():
    reader = EthereumChainReader("https://rpc.test", client=_rpc_client({}))
    with pytest.raises(ChainRpcError):
        await reader.get_transaction("0xabc")


@pytest.mark.asyncio
async def test_http_failure_raises_chain_error():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    reader = SolanaChainReader("https://rpc.test", client=client)

    with pytest.raises(ChainRpcError) as excinfo:
        await reader.get_transaction("sig")

    assert excinfo.value.retryable


@pytest.mark.asyncio
async def test_solana_reader_uses_recipient_balance_delta():
    client = _rpc_client(
        {
            "getTransaction": {
                "meta": {"err": None, "preBalances": [5_000_000_000, 0], "postBalances": [3_499_995_000, 1_500_000_000]},
                "transaction": {
                    "message": {"accountKeys": [{"pubkey": "Holder111"}, {"pubkey": "Organizer111"}]},
                },
            }
        }
    )
    reader = SolanaChainReader("https://rpc.test", client=client)

    tx = await reader.get_transaction("sig", recipient="Organizer111")

    assert tx.succeeded
    assert tx.sender == "Holder111"
    assert tx.recipients == ("Holder111", "Organizer111")
    assert tx.amount == pytest.approx(1.5)
    assert not reader.same_address("organizer111", "Organizer111")


@pytest.mark.asyncio
async def test_solana_reader_marks_failed_transactions():
    client = _rpc_client(
        {
            "getTransaction": {
                "meta": {"err": {"InstructionError": [0, "Custom"]}, "preBalances": [], "postBalances": []},
                "transaction": {"message": {"accountKeys": ["Holder111"]}},
            }
        }
    )
    tx = await SolanaChainReader("https://rpc.test", client=client).get_transaction("sig")

    assert not tx.succeeded
    assert tx.amount is None


@pytest.mark.asyncio
async def test_relayer_posts_action_and_returns_hash():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"txHash": "0xdone"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://relayer.test")
    writer = EscrowRelayerWriter("https://relayer.test", client=client)

    tx_hash = await writer.release("tkt-1", "0xHolder", network="ethereum")

    assert tx_hash == "0xdone"
    assert requests[0].url.path == "/release"
    assert json.loads(requests[0].content) == {
        "ticketId": "tkt-1",
        "holderAddress": "0xHolder",
        "network": "ethereum",
    }
    await writer.close()


@pytest.mark.asyncio
async def test_relayer_without_hash_raises():
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})),
        base_url="https://relayer.test",
    )
    writer = EscrowRelayerWriter("https://relayer.test", client=client)

    with pytest.raises(ChainRpcError):
        await writer.forfeit("tkt-1", "0xHolder", network="solana")
