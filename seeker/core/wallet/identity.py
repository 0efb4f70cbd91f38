"""
Primary wallet identities.

The primary identity is the player's long-lived key. It is either held in
process (tests, bots, desktop builds) or lives behind a wallet adapter that
only exposes a sign-transaction call. Neither form is ever persisted.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Union

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ..execution.tx_builder import ExternalSigner, LocalKeypairSigner


class WalletAdapter(ABC):
    """
    Bridge to an external wallet.

    sign_transaction receives the partially signed wire transaction and
    returns the wallet's re-serialized transaction. rpc_url, when set,
    joins the endpoint pool as the wallet-supplied endpoint.
    """

    rpc_url: Optional[str] = None

    @property
    @abstractmethod
    def public_key(self) -> Pubkey:
        pass

    @abstractmethod
    async def sign_transaction(self, transaction: bytes) -> bytes:
        pass


class LocalWalletIdentity(LocalKeypairSigner):
    """Primary identity backed by an in-process key pair."""

    rpc_url: Optional[str] = None

    @classmethod
    def generate(cls) -> "LocalWalletIdentity":
        return cls(Keypair())

    @classmethod
    def from_base58(cls, secret: str) -> "LocalWalletIdentity":
        return cls(Keypair.from_base58_string(secret))

    def __repr__(self) -> str:
        return f"LocalWalletIdentity({self.pubkey})"


class ExternalWalletIdentity(ExternalSigner):
    """Primary identity reachable only through a wallet adapter."""

    def __init__(self, adapter: WalletAdapter) -> None:
        super().__init__(adapter.public_key, adapter.sign_transaction)
        self.adapter = adapter

    @property
    def rpc_url(self) -> Optional[str]:
        return self.adapter.rpc_url

    def __repr__(self) -> str:
        return f"ExternalWalletIdentity({self.pubkey})"


PrimaryIdentity = Union[LocalWalletIdentity, ExternalWalletIdentity]
