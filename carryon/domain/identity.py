"""
Who is acting on the core.

Every core call receives one of these values instead of an optional user
id, so "no credential" is an explicit ``Anonymous`` rather than a missing
attribute.
"""

from __future__ import annotations

from dataclasses import dataclass

from .enums import ActorRole


class Identity:
    role: ActorRole = ActorRole.ANONYMOUS

    @property
    def is_authenticated(self) -> bool:
        return self.role is not ActorRole.ANONYMOUS

    @property
    def key(self) -> str:
        """Stable string form, e.g. ``driver:12``."""
        return self.role.value


@dataclass(frozen=True)
class Anonymous(Identity):
    role = ActorRole.ANONYMOUS


@dataclass(frozen=True)
class Customer(Identity):
    id: int
    role = ActorRole.CUSTOMER

    @property
    def key(self) -> str:
        return f"customer:{self.id}"


@dataclass(frozen=True)
class Driver(Identity):
    id: int
    role = ActorRole.DRIVER

    @property
    def key(self) -> str:
        return f"driver:{self.id}"


@dataclass(frozen=True)
class System(Identity):
    """Background workers and operators acting on behalf of the platform."""

    name: str = "system"
    role = ActorRole.SYSTEM


ANONYMOUS = Anonymous()
