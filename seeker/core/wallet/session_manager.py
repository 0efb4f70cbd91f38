"""
Session authority manager for delegated gameplay signing.

Manages the lifecycle of the player's session key:
- Grant (begin_session) with capability mask, spend cap and expiry
- Fee funding of the session key and top-ups
- Renewal when the program stops accepting the key
- Revocation (end_session)
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ...config import EngineOptions
from ..execution.solana_executor import SubmissionEngine
from ..execution.tx_builder import LocalKeypairSigner
from ..program.capabilities import CapabilityInput, to_capability_mask
from ..program.instructions import (
    ProgramAccounts,
    build_begin_session,
    build_create_token_account,
    build_end_session,
    build_transfer,
    session_expiry,
)
from ..recovery.errors import RpcError
from .identity import PrimaryIdentity
from .models import SessionAuthority, SessionSnapshot, SessionStatus

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000

StatusCallback = Callable[[str], None]


class SessionAuthorityManager:
    """
    Owns the single session authority of one player.

    Nothing here raises across the public methods: each lifecycle step
    reports success as a bool and describes itself through last_status and
    the optional on_status / on_error callbacks.

    Usage:
        manager = SessionAuthorityManager(engine, accounts, identity=wallet)
        if await manager.ensure_gameplay_session():
            signer = manager.session_signer
    """

    def __init__(
        self,
        engine: SubmissionEngine,
        accounts: ProgramAccounts,
        options: Optional[EngineOptions] = None,
        identity: Optional[PrimaryIdentity] = None,
        clock: Callable[[], float] = time.time,
        keypair_factory: Callable[[], Keypair] = Keypair,
        on_status: Optional[StatusCallback] = None,
        on_error: Optional[StatusCallback] = None,
    ) -> None:
        self._engine = engine
        self._accounts = accounts
        self._options = options or EngineOptions()
        self._identity = identity
        self._clock = clock
        self._keypair_factory = keypair_factory
        self._session: Optional[SessionAuthority] = None
        self._ensure_task: Optional[asyncio.Task] = None
        self.on_status = on_status
        self.on_error = on_error
        self.last_status: str = ""

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @property
    def identity(self) -> Optional[PrimaryIdentity]:
        return self._identity

    def connect(self, identity: PrimaryIdentity) -> None:
        if self._identity is not None and self._identity.pubkey != identity.pubkey:
            self.abandon()
        self._identity = identity
        self._emit_status(f"Wallet connected: {identity.pubkey}")

    def disconnect(self) -> None:
        self.abandon()
        self._identity = None
        self._emit_status("Wallet disconnected.")

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def has_active_authority(self) -> bool:
        session = self._session
        return (
            session is not None
            and session.status == SessionStatus.ACTIVE
            and not session.is_expired(self._clock())
        )

    @property
    def can_sign_locally(self) -> bool:
        session = self._session
        return session is not None and session.is_usable(self._clock())

    @property
    def active_session(self) -> Optional[SessionSnapshot]:
        if self._session is None:
            return None
        return self._session.snapshot()

    @property
    def session_signer(self) -> Optional[LocalKeypairSigner]:
        if not self.has_active_authority:
            return None
        return self._session.signer

    @property
    def seconds_until_expiry(self) -> Optional[float]:
        if self._session is None:
            return None
        return self._session.seconds_until_expiry(self._clock())

    def is_expiring(self, within_seconds: float = 60.0) -> bool:
        remaining = self.seconds_until_expiry
        return remaining is not None and remaining <= within_seconds

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def begin_session(
        self,
        capabilities: CapabilityInput = None,
        spend_cap: Optional[int] = None,
        duration_minutes: Optional[int] = None,
    ) -> bool:
        """
        Grant a fresh session key.

        Funding of the session key travels in the same transaction as the
        grant, so a successful begin leaves the key able to pay its own fees.
        Any failure leaves no session behind.
        """
        identity = self._identity
        if identity is None:
            self._emit_error("Cannot begin session: wallet not connected.")
            return False

        try:
            mask = to_capability_mask(
                self._options.default_capabilities if capabilities is None else capabilities
            )
        except (TypeError, ValueError) as e:
            self._emit_error(f"Cannot begin session: invalid capability mask ({e}).")
            return False
        if mask == 0:
            self._emit_error("Cannot begin session: instruction allowlist is empty.")
            return False

        max_spend = self._options.default_spend_cap if spend_cap is None else spend_cap
        duration = max(1, duration_minutes or self._options.default_session_minutes)
        player = identity.pubkey

        if not await self._ensure_player_token_account(identity):
            self._clear_session()
            return False

        keypair = self._keypair_factory()
        session_key = keypair.pubkey()
        authority_record = self._accounts.session_authority_pda(player, session_key)

        try:
            slot = await self._engine.get_slot()
        except RpcError as e:
            self._emit_error(f"Failed to fetch slot: {e.reason}")
            self._clear_session()
            return False

        now = self._clock()
        expires_at_slot, expires_at_unix = session_expiry(slot, int(now), duration)

        instructions = []
        funding = self._options.session_funding_lamports
        if funding > 0:
            instructions.append(build_transfer(player, session_key, funding))
        instructions.append(
            build_begin_session(
                self._accounts,
                player=player,
                session_key=session_key,
                expires_at_slot=expires_at_slot,
                expires_at_unix=expires_at_unix,
                instruction_allowlist=mask,
                max_token_spend=max_spend,
            )
        )

        self._emit_status("Starting gameplay session. Approve in wallet...")
        result = await self._engine.send(
            instructions,
            player,
            [identity, LocalKeypairSigner(keypair)],
        )
        if not result.succeeded:
            self._emit_error(f"Session start failed: {result.failure_reason}")
            self._clear_session()
            return False

        self._session = SessionAuthority(
            keypair=keypair,
            player=player,
            authority_record=authority_record,
            capabilities=mask,
            spend_cap=max_spend,
            expires_at_slot=expires_at_slot,
            expires_at_unix=expires_at_unix,
            created_at=now,
            funded=funding >= self._options.session_signer_min_lamports,
        )
        logger.info(
            f"Session {session_key} granted for {player}: mask={mask:#x} "
            f"spend_cap={max_spend} expires_at_slot={expires_at_slot}"
        )
        self._emit_status(f"Session started. Session key={session_key} tx={result.signature}")

        if not self._session.funded:
            if not await self.ensure_session_signer_funded():
                self._emit_error(
                    "Session signer funding failed. Gameplay may require wallet approval until funded."
                )
                return False
        return True

    async def ensure_session_signer_funded(self) -> bool:
        """Top up the session key when its balance fell below the minimum."""
        session = self._session
        identity = self._identity
        if session is None or session.status != SessionStatus.ACTIVE:
            self._emit_error("Session signer is unavailable for funding.")
            return False
        if identity is None:
            self._emit_error("Wallet disconnected while funding session signer.")
            session.funded = False
            return False

        try:
            balance = await self._engine.get_balance(session.session_key)
        except RpcError as e:
            self._emit_error(f"Failed to fetch session signer balance: {e.reason}")
            session.funded = False
            return False

        minimum = self._options.session_signer_min_lamports
        if balance >= minimum:
            session.funded = True
            return True

        amount = max(self._options.session_signer_top_up_lamports, minimum - balance)
        self._emit_status(
            f"Funding session wallet ({amount / LAMPORTS_PER_SOL:.6f} SOL). Approve in wallet..."
        )
        result = await self._engine.send(
            [build_transfer(identity.pubkey, session.session_key, amount)],
            identity.pubkey,
            [identity],
        )
        if not result.succeeded:
            self._emit_error(
                f"Session signer top-up failed: {result.failure_reason or '<unknown transfer failure>'}"
            )
            session.funded = False
            return False

        session.funded = True
        self._emit_status(f"Session wallet funded. tx={result.signature}")
        return True

    async def ensure_gameplay_session(self) -> bool:
        """
        Make sure a funded session exists before a delegated action.

        Concurrent callers share one in-flight attempt, so a burst of actions
        produces at most one new session.
        """
        task = self._ensure_task
        if task is None or task.done():
            task = asyncio.create_task(self._ensure_once(), name="gameplay-session-ensure")
            self._ensure_task = task
        return await asyncio.shield(task)

    async def _ensure_once(self) -> bool:
        session = self._session
        if session is not None and session.status == SessionStatus.ACTIVE:
            if session.is_expired(self._clock()):
                self._emit_status("Session expired. Re-starting session...")
            elif await self.ensure_session_signer_funded():
                return True
            else:
                self._emit_status("Session signer unfunded. Re-starting session...")

        started = await self.begin_session()
        if started:
            self._emit_status("Session ready.")
        else:
            self._emit_error("Session restart failed.")
        return started

    async def end_session(self) -> bool:
        """
        Revoke the session on chain.

        Local state is dropped as soon as revocation has been attempted; the
        return value only reports whether an endpoint confirmed it.
        """
        identity = self._identity
        if identity is None:
            self._emit_error("Cannot end session: wallet not connected.")
            return False

        session = self._session
        if session is None or session.status != SessionStatus.ACTIVE:
            self._emit_status("No active onchain session to end.")
            return True

        instruction = build_end_session(self._accounts, identity.pubkey, session.session_key)
        result = await self._engine.send([instruction], identity.pubkey, [identity])

        session.status = SessionStatus.ENDED
        if self._session is session:
            self._session = None

        if not result.succeeded:
            self._emit_error(
                f"Session revocation was not confirmed: {result.failure_reason}. Local session cleared."
            )
            return False

        self._emit_status(f"Session ended. tx={result.signature}")
        return True

    def invalidate_session(self, reason: Optional[str] = None) -> None:
        """Drop a session the program no longer accepts; its key is never reused."""
        session = self._session
        if session is None:
            return
        session.status = SessionStatus.INVALIDATED
        self._session = None
        self._emit_status(f"Session {session.session_key} invalidated: {reason or 'rejected by program'}")

    def abandon(self) -> None:
        """Forget the session without touching the chain."""
        if self._session is not None:
            logger.info(f"Abandoning session {self._session.session_key}")
        self._clear_session()

    async def close(self) -> None:
        """Cancel an in-flight ensure; its result is discarded."""
        task = self._ensure_task
        self._ensure_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _ensure_player_token_account(self, identity: PrimaryIdentity) -> bool:
        player: Pubkey = identity.pubkey
        token_account = self._accounts.player_token_account(player)
        try:
            if await self._engine.account_exists(token_account):
                return True
        except RpcError as e:
            # Creation is idempotent, so an unreadable account is just created.
            logger.warning(f"Could not read player token account {token_account}: {e.reason}")

        self._emit_status("Creating player token account...")
        result = await self._engine.send(
            [build_create_token_account(player, player, self._accounts.token_mint)],
            player,
            [identity],
        )
        if not result.succeeded:
            self._emit_error(f"Failed to create player token account: {result.failure_reason}")
            return False

        self._emit_status(f"Player token account ready. tx={result.signature}")
        return True

    def _clear_session(self) -> None:
        self._session = None

    def _emit_status(self, message: str) -> None:
        self.last_status = message
        logger.info(f"[WalletSession] {message}")
        if self.on_status:
            self.on_status(message)

    def _emit_error(self, message: str) -> None:
        self.last_status = message
        logger.error(f"[WalletSession] {message}")
        if self.on_error:
            self.on_error(message)
