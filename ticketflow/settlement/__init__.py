"""External-chain stake verification and settlement."""

from .chains import (
    ChainReader,
    ChainRpcError,
    ChainTransaction,
    ChainWriter,
    EscrowRelayerWriter,
    EthereumChainReader,
    SolanaChainReader,
)
from .verifier import SettlementReceipt, SettlementVerifier, VerificationOutcome

__all__ = [
    "ChainReader",
    "ChainRpcError",
    "ChainTransaction",
    "ChainWriter",
    "EscrowRelayerWriter",
    "EthereumChainReader",
    "SettlementReceipt",
    "SettlementVerifier",
    "SolanaChainReader",
    "VerificationOutcome",
]
