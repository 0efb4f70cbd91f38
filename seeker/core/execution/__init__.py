"""
Transaction Submission Layer

Provides the infrastructure for getting signed transactions on chain:
- EndpointPool: Ordered, de-duplicated RPC endpoints
- TransactionAssembler: Frozen-message multi-signer assembly
- SubmissionEngine: Retries, failover and raw probing across the pool

Usage:
    from seeker.core.execution import (
        EndpointPool,
        SubmissionEngine,
        LocalKeypairSigner,
    )

    engine = SubmissionEngine(EndpointPool.from_urls(primary_url, fallback_url))
    result = await engine.send(instructions, payer.pubkey(), [LocalKeypairSigner(payer)])
"""

from .endpoints import (
    EndpointDescriptor,
    EndpointPool,
    EndpointRole,
)

from .models import (
    SubmissionAttempt,
    SubmissionResult,
)

from .tx_builder import (
    ExternalSigner,
    FrozenMessage,
    LocalKeypairSigner,
    TransactionAssembler,
    TransactionSigner,
    decode_length,
    encode_length,
    parse_wire_transaction,
    signature_for,
)

from .solana_executor import SubmissionEngine

__all__ = [
    # Endpoints
    "EndpointDescriptor",
    "EndpointPool",
    "EndpointRole",
    # Models
    "SubmissionAttempt",
    "SubmissionResult",
    # Assembly
    "ExternalSigner",
    "FrozenMessage",
    "LocalKeypairSigner",
    "TransactionAssembler",
    "TransactionSigner",
    "decode_length",
    "encode_length",
    "parse_wire_transaction",
    "signature_for",
    # Engine
    "SubmissionEngine",
]
