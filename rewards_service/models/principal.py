from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Caller identity, resolved upstream.

    Authentication happens at the gateway, which forwards the stable user
    id in ``X-User-Id``.  Endpoints receive this instead of a raw header.
    """

    user_id: str
