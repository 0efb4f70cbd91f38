"""
Wallet Session Module

Provides delegated signing for gameplay actions:
- SessionAuthorityManager: Grant, fund, renew and revoke the session key
- DelegatedSigningRouter: Pick session or wallet signing per action
- Primary identities: In-process key pair or external wallet adapter

Usage:
    from seeker.core.wallet import (
        DelegatedSigningRouter,
        LocalWalletIdentity,
        SessionAuthorityManager,
    )

    manager = SessionAuthorityManager(engine, accounts, identity=LocalWalletIdentity.generate())
    router = DelegatedSigningRouter(manager, engine)
    result = await router.execute("LootChest", build_loot_chest)
"""

from .identity import (
    ExternalWalletIdentity,
    LocalWalletIdentity,
    PrimaryIdentity,
    WalletAdapter,
)

from .models import (
    ActionResult,
    DelegatedSessionContext,
    PrimaryWalletContext,
    SessionAuthority,
    SessionSnapshot,
    SessionStatus,
    SigningContext,
)

from .session_manager import SessionAuthorityManager

from .router import DelegatedSigningRouter, InstructionBuilder

__all__ = [
    # Identities
    "ExternalWalletIdentity",
    "LocalWalletIdentity",
    "PrimaryIdentity",
    "WalletAdapter",
    # Models
    "ActionResult",
    "DelegatedSessionContext",
    "PrimaryWalletContext",
    "SessionAuthority",
    "SessionSnapshot",
    "SessionStatus",
    "SigningContext",
    # Manager
    "SessionAuthorityManager",
    # Router
    "DelegatedSigningRouter",
    "InstructionBuilder",
]
