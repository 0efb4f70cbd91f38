"""
Gameplay session client.

The one object a game loop holds: it wires the endpoint pool, submission
engine, session authority manager and signing router together.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from solders.instruction import Instruction
from solders.keypair import Keypair

from ..config import EngineOptions, settings
from ..logging_config import bind_player, clear_player, setup_logging
from .execution.endpoints import EndpointPool
from .execution.solana_executor import SubmissionEngine
from .execution.tx_builder import TransactionSigner
from .program.capabilities import CapabilityInput
from .program.instructions import ProgramAccounts
from .wallet.identity import PrimaryIdentity
from .wallet.models import ActionResult, SessionSnapshot
from .wallet.router import DelegatedSigningRouter, InstructionBuilder
from .wallet.session_manager import SessionAuthorityManager, StatusCallback

logger = logging.getLogger(__name__)


class GameplaySessionClient:
    """
    Delegated-session gameplay client.

    Usage:
        async with create_gameplay_client(LocalWalletIdentity.generate()) as client:
            await client.ensure_gameplay_session()
            result = await client.execute_action("LootChest", build_loot_chest)
            await client.end_gameplay_session()
    """

    def __init__(
        self,
        identity: Optional[PrimaryIdentity] = None,
        options: Optional[EngineOptions] = None,
        engine: Optional[SubmissionEngine] = None,
        accounts: Optional[ProgramAccounts] = None,
        clock: Callable[[], float] = time.time,
        keypair_factory: Callable[[], Keypair] = Keypair,
        on_status: Optional[StatusCallback] = None,
        on_error: Optional[StatusCallback] = None,
    ) -> None:
        self._options = options or EngineOptions.from_settings()
        if engine is None:
            pool = EndpointPool.from_urls(
                self._options.rpc_url,
                self._options.rpc_fallback_url,
                identity.rpc_url if identity is not None else None,
            )
            engine = SubmissionEngine(pool, self._options)
        self.engine = engine
        self.accounts = accounts or ProgramAccounts.from_strings(
            self._options.program_id,
            self._options.global_pda,
            self._options.token_mint,
        )
        self.manager = SessionAuthorityManager(
            engine,
            self.accounts,
            options=self._options,
            identity=identity,
            clock=clock,
            keypair_factory=keypair_factory,
            on_status=on_status,
            on_error=on_error,
        )
        self.router = DelegatedSigningRouter(self.manager, engine)
        if identity is not None:
            bind_player(str(identity.pubkey))

    async def __aenter__(self) -> "GameplaySessionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Wallet
    # -------------------------------------------------------------------------

    @property
    def identity(self) -> Optional[PrimaryIdentity]:
        return self.manager.identity

    async def connect(self, identity: PrimaryIdentity) -> None:
        self.manager.connect(identity)
        await self.engine.set_wallet_endpoint(identity.rpc_url)
        bind_player(str(identity.pubkey))

    async def disconnect(self) -> None:
        await self.manager.close()
        self.manager.disconnect()
        await self.engine.set_wallet_endpoint(None)
        clear_player()

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    async def ensure_gameplay_session(self) -> bool:
        return await self.manager.ensure_gameplay_session()

    async def begin_gameplay_session(
        self,
        capabilities: CapabilityInput = None,
        spend_cap: Optional[int] = None,
        duration_minutes: Optional[int] = None,
    ) -> bool:
        return await self.manager.begin_session(capabilities, spend_cap, duration_minutes)

    async def end_gameplay_session(self) -> bool:
        return await self.manager.end_session()

    @property
    def has_active_authority(self) -> bool:
        return self.manager.has_active_authority

    @property
    def can_sign_locally(self) -> bool:
        return self.manager.can_sign_locally

    @property
    def active_session(self) -> Optional[SessionSnapshot]:
        return self.manager.active_session

    @property
    def last_status(self) -> str:
        return self.manager.last_status

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def send(
        self,
        instructions: Sequence[Instruction],
        signers: Optional[Sequence[TransactionSigner]] = None,
    ) -> Optional[str]:
        """
        Send instructions signed by signers (default: the primary wallet).

        The first signer pays the fee. Returns the signature, or None.
        """
        if signers is None:
            identity = self.manager.identity
            if identity is None:
                logger.error("Cannot send: wallet not connected")
                return None
            signers = [identity]
        if not signers:
            logger.error("Cannot send: no signers")
            return None
        return await self.engine.send_signature(instructions, signers[0].pubkey, signers)

    async def execute_action(
        self,
        action_name: str,
        build_instructions: InstructionBuilder,
        ensure_session: bool = True,
    ) -> ActionResult:
        return await self.router.execute(action_name, build_instructions, ensure_session)

    async def close(self) -> None:
        """Cancel in-flight session work and release HTTP clients."""
        await self.manager.close()
        await self.engine.close()
        clear_player()


def create_gameplay_client(
    identity: Optional[PrimaryIdentity] = None,
    options: Optional[EngineOptions] = None,
    on_status: Optional[StatusCallback] = None,
    on_error: Optional[StatusCallback] = None,
    configure_logging: bool = True,
) -> GameplaySessionClient:
    """
    Build a client from settings (or explicit options).

    Logging is configured at settings.log_level unless the host application
    has set up its own handlers and passes configure_logging=False.
    """
    if configure_logging:
        setup_logging(settings.log_level)
    return GameplaySessionClient(
        identity=identity,
        options=options or EngineOptions.from_settings(),
        on_status=on_status,
        on_error=on_error,
    )
