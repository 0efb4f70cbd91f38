"""
Delegated signing router.

Decides per action whether the session key or the primary wallet signs,
and renews the session once when the program rejects it.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence, Union

from solders.instruction import Instruction

from ..execution.models import SubmissionResult
from ..execution.solana_executor import SubmissionEngine
from ..program.errors import describe_program_error
from ..recovery.errors import (
    PreconditionError,
    authorization_failure_for,
    is_recoverable_authorization_error,
)
from .models import (
    ActionResult,
    DelegatedSessionContext,
    PrimaryWalletContext,
    SigningContext,
)
from .session_manager import SessionAuthorityManager

logger = logging.getLogger(__name__)

InstructionBuilder = Callable[[SigningContext], Union[Instruction, Sequence[Instruction]]]


class DelegatedSigningRouter:
    """
    Routes gameplay actions to the right signer.

    Usage:
        router = DelegatedSigningRouter(manager, engine)
        result = await router.execute(
            "MovePlayer",
            lambda ctx: build_move(ctx.authority, ctx.player, ctx.session_authority, x, y),
        )
    """

    def __init__(self, manager: SessionAuthorityManager, engine: SubmissionEngine) -> None:
        self._manager = manager
        self._engine = engine

    def signing_context(self) -> SigningContext:
        """
        Context for the next action, computed fresh every time.

        Delegated only when a funded session with an authority record exists.
        """
        identity = self._manager.identity
        if identity is None:
            raise PreconditionError("Wallet not connected")

        signer = self._manager.session_signer
        session = self._manager.active_session
        if self._manager.can_sign_locally and signer is not None and session is not None:
            return DelegatedSessionContext(
                signer=signer,
                player=identity.pubkey,
                session_authority=session.authority_record,
            )
        return PrimaryWalletContext(signer=identity, player=identity.pubkey)

    async def execute(
        self,
        action_name: str,
        build_instructions: InstructionBuilder,
        ensure_session: bool = True,
    ) -> ActionResult:
        result = ActionResult(action=action_name)
        if self._manager.identity is None:
            return self._fail(result, "Wallet not connected")

        if ensure_session and not self._manager.can_sign_locally:
            if not await self._manager.ensure_gameplay_session():
                logger.info(f"{action_name}: no session available, falling back to wallet signing")
            # The wallet can disconnect while the session is being ensured
            if self._manager.identity is None:
                return self._fail(result, "Wallet disconnected")

        context = self.signing_context()
        result.used_session = context.uses_delegated_authority
        submission = await self._submit(action_name, context, build_instructions)
        if submission is None:
            return self._fail(result, f"{action_name}: failed to build instructions")

        code = submission.program_error_code
        if (
            not submission.succeeded
            and context.uses_delegated_authority
            and is_recoverable_authorization_error(code)
        ):
            failure = authorization_failure_for(code)
            result.authorization_failure = failure
            self._manager.invalidate_session(describe_program_error(code))
            logger.warning(f"{action_name}: session rejected ({failure.value}), renewing")

            if not await self._manager.ensure_gameplay_session():
                return self._fail(result, f"{action_name}: session renewal failed", submission)
            if self._manager.identity is None:
                return self._fail(result, "Wallet disconnected", submission)

            context = self.signing_context()
            if not context.uses_delegated_authority:
                return self._fail(result, f"{action_name}: renewed session is not usable", submission)

            result.retried = True
            result.used_session = True
            submission = await self._submit(action_name, context, build_instructions)
            if submission is None:
                return self._fail(result, f"{action_name}: failed to build instructions")

        if not submission.succeeded:
            if submission.program_error_code is not None:
                result.authorization_failure = authorization_failure_for(submission.program_error_code)
            return self._fail(result, submission.failure_reason or f"{action_name} failed", submission)

        result.signature = submission.signature
        result.status = f"{action_name} sent: {submission.signature}"
        logger.info(
            f"{action_name} sent via {'session' if result.used_session else 'wallet'}: "
            f"{submission.signature}"
        )
        return result

    async def _submit(
        self,
        action_name: str,
        context: SigningContext,
        build_instructions: InstructionBuilder,
    ) -> Optional[SubmissionResult]:
        try:
            built = build_instructions(context)
        except Exception as e:
            logger.error(f"{action_name}: instruction builder raised {type(e).__name__}: {e}")
            return None
        instructions: List[Instruction] = [built] if isinstance(built, Instruction) else list(built)
        return await self._engine.send(instructions, context.signer.pubkey, [context.signer])

    @staticmethod
    def _fail(
        result: ActionResult,
        message: str,
        submission: Optional[SubmissionResult] = None,
    ) -> ActionResult:
        result.status = message
        result.failure = message
        if submission is not None:
            result.failure = submission.failure_reason or message
            result.failure_class = submission.failure_class
            result.program_error_code = submission.program_error_code
        logger.error(message)
        return result
