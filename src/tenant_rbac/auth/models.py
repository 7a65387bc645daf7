from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Principal:
    """Authenticated actor as issued by the identity provider."""

    user_id: str
    email: str | None = None
