"""Browser identity providers for upstream requests."""

from __future__ import annotations

import random
from typing import Protocol

from .models import Identity


class IdentityProvider(Protocol):
    """Supplies the identity headers for one upstream chat request."""

    def next_identity(self) -> Identity:
        ...


class RandomIdentityProvider:
    """Picks a User-Agent uniformly from a fixed pool for every request."""

    def __init__(
        self,
        user_agents: list[str],
        origin: str,
        referer: str,
        rng: random.Random | None = None,
    ) -> None:
        if not user_agents:
            raise ValueError("user_agents must not be empty")
        self.user_agents = list(user_agents)
        self.origin = origin
        self.referer = referer
        self._rng = rng or random.Random()

    def next_identity(self) -> Identity:
        return Identity(
            user_agent=self._rng.choice(self.user_agents),
            origin=self.origin,
            referer=self.referer,
        )


class StaticIdentityProvider:
    """Always presents the same identity."""

    def __init__(self, identity: Identity) -> None:
        self.identity = identity

    def next_identity(self) -> Identity:
        return self.identity
