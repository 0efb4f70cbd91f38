"""
Transaction assembler for single- and multi-signer transactions.

The canonical message is compiled exactly once and frozen. Every signature,
local or external, is computed over those frozen bytes, and the final wire
transaction is concatenated by hand:

    [compact-u16 signature count][signatures in account order][message]

External signers are handed the frozen, partially signed transaction, but
whatever they serialize back is not trusted: only their own signature is
taken out of it, verified against the frozen message and slotted in by
public key. Wallet SDKs that re-compile the message while signing can
reorder or resize the signer list, which the network then rejects with an
opaque account sanitation error.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Mapping, Sequence, Tuple, Union

from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature

from ..recovery.errors import AssemblyError

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 64
_EMPTY_SIGNATURE = bytes(SIGNATURE_LENGTH)


def encode_length(value: int) -> bytes:
    """Encode a compact-u16 (shortvec) length prefix."""
    if value < 0 or value > 0xFFFF:
        raise ValueError(f"compact-u16 out of range: {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_length(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """Decode a compact-u16 at offset; returns (value, offset after prefix)."""
    value = 0
    for index in range(3):
        if offset >= len(data):
            raise ValueError("truncated compact-u16")
        byte = data[offset]
        offset += 1
        # Third byte carries only bits 14-15
        if index == 2 and byte > 0x03:
            raise ValueError(f"compact-u16 out of range: third byte {byte:#04x}")
        value |= (byte & 0x7F) << (7 * index)
        if not byte & 0x80:
            return value, offset
    raise ValueError("compact-u16 longer than 3 bytes")


def parse_wire_transaction(wire: bytes) -> Tuple[List[bytes], bytes]:
    """Split a legacy wire transaction into (raw signatures, message bytes)."""
    count, offset = decode_length(wire)
    end = offset + count * SIGNATURE_LENGTH
    if end > len(wire):
        raise ValueError(f"wire transaction truncated: {count} signatures declared")
    signatures = [wire[i:i + SIGNATURE_LENGTH] for i in range(offset, end, SIGNATURE_LENGTH)]
    return signatures, wire[end:]


def verify_signature(pubkey: Pubkey, message: bytes, signature: bytes) -> bool:
    try:
        VerifyKey(bytes(pubkey)).verify(message, signature)
        return True
    except (BadSignatureError, ValueError):
        return False


@dataclass(frozen=True)
class FrozenMessage:
    """A compiled message whose bytes never change after compilation."""

    message_bytes: bytes
    account_keys: Tuple[Pubkey, ...]
    num_required_signatures: int

    @classmethod
    def compile(
        cls,
        instructions: Sequence[Instruction],
        fee_payer: Pubkey,
        blockhash: Union[Hash, str],
    ) -> "FrozenMessage":
        if not instructions:
            raise AssemblyError("Cannot compile a message without instructions", step="compile")
        recent = Hash.from_string(blockhash) if isinstance(blockhash, str) else blockhash
        message = Message.new_with_blockhash(list(instructions), fee_payer, recent)
        return cls(
            message_bytes=bytes(message),
            account_keys=tuple(message.account_keys),
            num_required_signatures=message.header.num_required_signatures,
        )

    @property
    def signer_keys(self) -> Tuple[Pubkey, ...]:
        return self.account_keys[:self.num_required_signatures]

    def slot_of(self, pubkey: Pubkey) -> int:
        try:
            slot = self.signer_keys.index(pubkey)
        except ValueError:
            raise AssemblyError(
                f"{pubkey} is not a required signer of the compiled message",
                signer=str(pubkey),
                step="signer-set",
            )
        return slot

    def to_wire(self, contributions: Mapping[Pubkey, Signature]) -> bytes:
        """Partially signed transaction; missing slots carry zeroed placeholders."""
        return self._concatenate(
            bytes(contributions[key]) if key in contributions else _EMPTY_SIGNATURE
            for key in self.signer_keys
        )

    def assemble(self, contributions: Mapping[Pubkey, Signature]) -> bytes:
        """
        Final wire bytes from signatures contributed in any order.

        Every required signer must have contributed a signature that verifies
        against the frozen message; nothing else is accepted.
        """
        for key in contributions:
            self.slot_of(key)

        ordered: List[bytes] = []
        for key in self.signer_keys:
            signature = contributions.get(key)
            if signature is None:
                raise AssemblyError(
                    f"Missing signature for required signer {key}",
                    signer=str(key),
                    step="assemble",
                )
            raw = bytes(signature)
            if not verify_signature(key, self.message_bytes, raw):
                raise AssemblyError(
                    f"Signature for {key} does not verify against the frozen message",
                    signer=str(key),
                    step="assemble",
                )
            ordered.append(raw)
        return self._concatenate(ordered)

    def extract_signature(self, wire: bytes, pubkey: Pubkey) -> Signature:
        """
        Take pubkey's signature out of a transaction re-serialized by someone else.

        The returned transaction may have a different message layout; the
        signature is located by pubkey in whatever message came back, and must
        still verify against the frozen bytes.
        """
        try:
            signatures, returned_message = parse_wire_transaction(wire)
        except ValueError as e:
            raise AssemblyError(
                f"External signer returned an unparseable transaction: {e}",
                signer=str(pubkey),
                step="external-signature",
            )

        slot = self.slot_of(pubkey)
        if returned_message != self.message_bytes:
            logger.warning(
                f"External signer {pubkey} re-serialized the message "
                f"({len(returned_message)} bytes vs {len(self.message_bytes)} frozen)"
            )
            try:
                returned_keys = list(Message.from_bytes(returned_message).account_keys)
                slot = returned_keys.index(pubkey)
            except Exception as e:
                logger.warning(f"Could not locate {pubkey} in returned message, using frozen slot: {e}")

        if slot >= len(signatures) or signatures[slot] == _EMPTY_SIGNATURE:
            raise AssemblyError(
                f"External signer did not return a signature for {pubkey}",
                signer=str(pubkey),
                step="external-signature",
            )

        raw = signatures[slot]
        if not verify_signature(pubkey, self.message_bytes, raw):
            raise AssemblyError(
                f"External signature for {pubkey} was made over a different message",
                signer=str(pubkey),
                step="external-signature",
            )
        return Signature.from_bytes(raw)

    def _concatenate(self, signatures) -> bytes:
        signatures = list(signatures)
        return encode_length(len(signatures)) + b"".join(signatures) + self.message_bytes


# =============================================================================
# Signers
# =============================================================================

class TransactionSigner(ABC):
    """Anything that can contribute one signature to a frozen message."""

    is_external: bool = False

    @property
    @abstractmethod
    def pubkey(self) -> Pubkey:
        pass

    @abstractmethod
    async def contribute(
        self,
        frozen: FrozenMessage,
        contributions: Mapping[Pubkey, Signature],
    ) -> Signature:
        """Return this signer's signature over frozen.message_bytes."""
        pass


class LocalKeypairSigner(TransactionSigner):
    """In-process key pair; signs the frozen bytes directly."""

    def __init__(self, keypair: Keypair) -> None:
        self._keypair = keypair

    @property
    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    async def contribute(
        self,
        frozen: FrozenMessage,
        contributions: Mapping[Pubkey, Signature],
    ) -> Signature:
        return self._keypair.sign_message(frozen.message_bytes)

    def __repr__(self) -> str:
        return f"LocalKeypairSigner({self.pubkey})"


SignTransactionFn = Callable[[bytes], Awaitable[bytes]]


class ExternalSigner(TransactionSigner):
    """
    A signer reachable only through a sign-transaction call (wallet adapter,
    device prompt). Receives the partially signed wire bytes.
    """

    is_external = True

    def __init__(self, pubkey: Pubkey, sign_transaction: SignTransactionFn) -> None:
        self._pubkey = pubkey
        self._sign_transaction = sign_transaction

    @property
    def pubkey(self) -> Pubkey:
        return self._pubkey

    async def contribute(
        self,
        frozen: FrozenMessage,
        contributions: Mapping[Pubkey, Signature],
    ) -> Signature:
        partially_signed = frozen.to_wire(contributions)
        returned = await self._sign_transaction(partially_signed)
        return frozen.extract_signature(returned, self._pubkey)

    def __repr__(self) -> str:
        return f"ExternalSigner({self._pubkey})"


class TransactionAssembler:
    """
    Builds signed wire transactions.

    Usage:
        assembler = TransactionAssembler()
        wire = await assembler.build(
            instructions=[transfer_ix, begin_session_ix],
            fee_payer=wallet.pubkey,
            signers=[wallet, session_signer],
            blockhash=latest.blockhash,
        )
    """

    async def build(
        self,
        instructions: Sequence[Instruction],
        fee_payer: Pubkey,
        signers: Sequence[TransactionSigner],
        blockhash: Union[Hash, str],
    ) -> bytes:
        frozen = FrozenMessage.compile(instructions, fee_payer, blockhash)

        by_key: Dict[Pubkey, TransactionSigner] = {}
        for signer in signers:
            by_key.setdefault(signer.pubkey, signer)

        for key in by_key:
            frozen.slot_of(key)
        for key in frozen.signer_keys:
            if key not in by_key:
                raise AssemblyError(
                    f"No signer supplied for required signer {key}",
                    signer=str(key),
                    step="signer-set",
                )

        # Local signatures first: external wallets see a partially signed
        # transaction and only have to add their own slot.
        contributions: Dict[Pubkey, Signature] = {}
        for signer in sorted(by_key.values(), key=lambda s: s.is_external):
            contributions[signer.pubkey] = await signer.contribute(frozen, dict(contributions))

        wire = frozen.assemble(contributions)
        logger.debug(
            f"Assembled transaction: signers={frozen.num_required_signatures} "
            f"accounts={len(frozen.account_keys)} size={len(wire)} bytes"
        )
        return wire


def signature_for(wire: bytes) -> str:
    """Base58 transaction id (the fee payer's signature) of a wire transaction."""
    signatures, _message = parse_wire_transaction(wire)
    if not signatures:
        raise ValueError("transaction carries no signatures")
    return str(Signature.from_bytes(signatures[0]))
