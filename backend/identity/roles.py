"""Role names and the compact role claim embedded in tokens.

A role claim is the user's role set, de-duplicated, sorted, and joined with
single spaces, e.g. ``"ADMIN RDF SIGNIN"``. Handlers check roles against the
claim without a directory round-trip.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

ADMIN = "ADMIN"
"""Super-user; bypasses every role gate."""

RDF = "RDF"
"""Grants access to the restricted genomics modules."""

SIGNIN = "SIGNIN"
"""Required to obtain tokens or sessions at all."""

USER = "USER"

KNOWN_ROLES = (ADMIN, RDF, SIGNIN, USER)

_SEPARATOR = " "


def make_role_claim(roles: Iterable[str]) -> str:
    """Encode a role set as a role claim."""
    return _SEPARATOR.join(sorted({role.strip() for role in roles if role.strip()}))


def parse_role_claim(claim: str) -> frozenset[str]:
    return frozenset(role for role in claim.split(_SEPARATOR) if role)


def is_admin(claim: str) -> bool:
    return ADMIN in parse_role_claim(claim)


def can_sign_in(claim: str) -> bool:
    roles = parse_role_claim(claim)
    return ADMIN in roles or SIGNIN in roles


def has_any_role(claim: str, required: Iterable[str]) -> bool:
    """Return True when the claim holds ADMIN or any of the required roles."""
    roles = parse_role_claim(claim)
    if ADMIN in roles:
        return True
    return not roles.isdisjoint(required)
