"""
Endpoint pool: the ordered RPC endpoints every read and write walks through.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, Optional


class EndpointRole(str, Enum):
    """Where an endpoint came from. Declaration order is priority order."""
    PRIMARY = "primary"
    FALLBACK = "fallback"
    WALLET_SUPPLIED = "wallet_supplied"


_ROLE_PRIORITY = {role: index for index, role in enumerate(EndpointRole)}


@dataclass(frozen=True)
class EndpointDescriptor:
    url: str
    role: EndpointRole

    @property
    def label(self) -> str:
        return self.role.value

    @property
    def key(self) -> str:
        return normalize_url(self.url)


def normalize_url(url: str) -> str:
    return url.strip().rstrip("/").lower()


class EndpointPool:
    """
    De-duplicated, role-ordered endpoint list.

    The first occurrence of a URL wins, so a fallback identical to the
    primary is dropped rather than tried twice.
    """

    def __init__(self, endpoints: Iterable[EndpointDescriptor] = ()) -> None:
        self._endpoints: List[EndpointDescriptor] = []
        for endpoint in sorted(endpoints, key=lambda e: _ROLE_PRIORITY[e.role]):
            self.add(endpoint)

    @classmethod
    def from_urls(
        cls,
        primary: Optional[str],
        fallback: Optional[str] = None,
        wallet_supplied: Optional[str] = None,
    ) -> "EndpointPool":
        pool = cls()
        for url, role in (
            (primary, EndpointRole.PRIMARY),
            (fallback, EndpointRole.FALLBACK),
            (wallet_supplied, EndpointRole.WALLET_SUPPLIED),
        ):
            if url and url.strip():
                pool.add(EndpointDescriptor(url=url.strip(), role=role))
        return pool

    def add(self, endpoint: EndpointDescriptor) -> bool:
        """Insert endpoint in role order; returns False for a duplicate URL."""
        if any(existing.key == endpoint.key for existing in self._endpoints):
            return False
        position = len(self._endpoints)
        for index, existing in enumerate(self._endpoints):
            if _ROLE_PRIORITY[existing.role] > _ROLE_PRIORITY[endpoint.role]:
                position = index
                break
        self._endpoints.insert(position, endpoint)
        return True

    def set_wallet_endpoint(self, url: Optional[str]) -> None:
        """Replace the wallet-supplied endpoint (wallets may switch RPC at runtime)."""
        self._endpoints = [e for e in self._endpoints if e.role != EndpointRole.WALLET_SUPPLIED]
        if url and url.strip():
            self.add(EndpointDescriptor(url=url.strip(), role=EndpointRole.WALLET_SUPPLIED))

    @property
    def endpoints(self) -> List[EndpointDescriptor]:
        return list(self._endpoints)

    def __iter__(self) -> Iterator[EndpointDescriptor]:
        return iter(list(self._endpoints))

    def __len__(self) -> int:
        return len(self._endpoints)

    def __bool__(self) -> bool:
        return bool(self._endpoints)
