"""Network-specific chain access over JSON-RPC and the escrow relayer."""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

import httpx

from ticketflow.lifecycle.errors import LifecycleError

logger = logging.getLogger(__name__)

WEI_PER_ETH = 10**18
LAMPORTS_PER_SOL = 10**9


class ChainRpcError(LifecycleError):
    """A chain node or the relayer could not answer."""

    code = "CHAIN_RPC_ERROR"
    retryable = True


@dataclass(frozen=True, slots=True)
class ChainTransaction:
    tx_hash: str
    confirmed: bool
    succeeded: bool
    recipients: tuple[str, ...] = ()
    sender: str | None = None
    amount: float | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)


class ChainReader(Protocol):
    network: str
    currency: str

    async def get_transaction(self, tx_hash: str, *, recipient: str | None = None) -> ChainTransaction | None:
        ...

    def same_address(self, left: str, right: str) -> bool:
        ...


class ChainWriter(Protocol):
    async def release(self, entity_id: str, holder_address: str, *, network: str) -> str:
        ...

    async def forfeit(self, entity_id: str, holder_address: str, *, network: str) -> str:
        ...


class _JsonRpcReader:
    network = ""
    currency = ""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: Sequence[Any]) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": list(params)}
        try:
            response = await self._client.post(self._rpc_url, json=body)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ChainRpcError(f"{self.network} RPC {method} failed: {exc}") from exc
        if data.get("error"):
            raise ChainRpcError(f"{self.network} RPC {method} returned error: {data['error']}")
        return data.get("result")

    def same_address(self, left: str, right: str) -> bool:
        return left == right

    async def close(self) -> None:
        await self._client.aclose()


class EthereumChainReader(_JsonRpcReader):
    network = "ethereum"
    currency = "ETH"

    async def get_transaction(self, tx_hash: str, *, recipient: str | None = None) -> ChainTransaction | None:
        tx = await self._call("eth_getTransactionByHash", [tx_hash])
        if tx is None:
            return None
        receipt = await self._call("eth_getTransactionReceipt", [tx_hash])
        to_address = tx.get("to")
        value = tx.get("value") or "0x0"
        return ChainTransaction(
            tx_hash=tx_hash,
            confirmed=receipt is not None,
            succeeded=receipt is not None and receipt.get("status") == "0x1",
            recipients=(to_address,) if to_address else (),
            sender=tx.get("from"),
            amount=int(value, 16) / WEI_PER_ETH,
            raw={"transaction": tx, "receipt": receipt},
        )

    def same_address(self, left: str, right: str) -> bool:
        return left.lower() == right.lower()


class SolanaChainReader(_JsonRpcReader):
    network = "solana"
    currency = "SOL"

    async def get_transaction(self, tx_hash: str, *, recipient: str | None = None) -> ChainTransaction | None:
        result = await self._call(
            "getTransaction",
            [
                tx_hash,
                {"encoding": "jsonParsed", "commitment": "confirmed", "maxSupportedTransactionVersion": 0},
            ],
        )
        if result is None:
            return None
        meta = result.get("meta") or {}
        keys = [
            key.get("pubkey") if isinstance(key, Mapping) else key
            for key in result.get("transaction", {}).get("message", {}).get("accountKeys", [])
        ]
        return ChainTransaction(
            tx_hash=tx_hash,
            confirmed=True,
            succeeded=meta.get("err") is None,
            recipients=tuple(key for key in keys if key),
            sender=keys[0] if keys else None,
            amount=self._received(keys, meta, recipient),
            raw=result,
        )

    @staticmethod
    def _received(keys: Sequence[str], meta: Mapping[str, Any], recipient: str | None) -> float | None:
        pre = meta.get("preBalances") or []
        post = meta.get("postBalances") or []
        deltas = [after - before for before, after in zip(pre, post)]
        if not deltas:
            return None
        if recipient is not None and recipient in keys:
            index = keys.index(recipient)
            if index < len(deltas):
                return deltas[index] / LAMPORTS_PER_SOL
        return max(deltas) / LAMPORTS_PER_SOL


class EscrowRelayerWriter:
    """Asks a signing relayer to move escrowed stakes and returns the tx hash."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout, headers=headers)

    async def release(self, entity_id: str, holder_address: str, *, network: str) -> str:
        return await self._submit("release", entity_id, holder_address, network)

    async def forfeit(self, entity_id: str, holder_address: str, *, network: str) -> str:
        return await self._submit("forfeit", entity_id, holder_address, network)

    async def _submit(self, action: str, entity_id: str, holder_address: str, network: str) -> str:
        try:
            response = await self._client.post(
                f"/{action}",
                json={"ticketId": entity_id, "holderAddress": holder_address, "network": network},
            )
            response.raise_for_status()
            tx_hash = response.json().get("txHash")
        except (httpx.HTTPError, ValueError) as exc:
            raise ChainRpcError(f"Escrow {action} for {entity_id} failed: {exc}") from exc
        if not tx_hash:
            raise ChainRpcError(f"Escrow {action} for {entity_id} returned no transaction hash")
        logger.info("Escrow %s submitted for %s: %s", action, entity_id, tx_hash)
        return str(tx_hash)

    async def close(self) -> None:
        await self._client.aclose()
