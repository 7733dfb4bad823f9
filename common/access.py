"""Role-based access policy.

Roles are a set-valued lookup (principal -> {Role}) and every permission check
goes through :meth:`AccessPolicy.require`, so the full authorisation matrix
lives in :data:`PERMISSIONS` and nowhere else.
"""
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Set

from .errors import InvalidParameter, Unauthorized

__all__ = ["Role", "Operation", "PERMISSIONS", "AccessPolicy"]

_LOG = logging.getLogger(__name__)


class Role(str, Enum):
    OWNER = "owner"
    GOVERNANCE = "governance"
    REACTIVE_TRIGGER = "reactive_trigger"
    EMERGENCY = "emergency"


class Operation(str, Enum):
    # monitor side
    REGISTER_FEED = "register_feed"
    REGISTER_TREASURY = "register_treasury"
    SET_TREASURY_ACTIVE = "set_treasury_active"
    # treasury side
    ADD_ASSET = "add_asset"
    UPDATE_ALLOCATION = "update_allocation"
    SET_ASSET_PRICE = "set_asset_price"
    LINK_FEED = "link_feed"
    EXECUTE_REBALANCE = "execute_rebalance"
    PAUSE = "pause"
    UNPAUSE = "unpause"
    GRANT_ROLE = "grant_role"
    REVOKE_ROLE = "revoke_role"


# Operation -> role required. Anything missing here is denied.
PERMISSIONS: Dict[Operation, Role] = {
    Operation.REGISTER_FEED: Role.OWNER,
    Operation.REGISTER_TREASURY: Role.OWNER,
    Operation.SET_TREASURY_ACTIVE: Role.OWNER,
    Operation.ADD_ASSET: Role.GOVERNANCE,
    Operation.UPDATE_ALLOCATION: Role.GOVERNANCE,
    Operation.SET_ASSET_PRICE: Role.GOVERNANCE,
    Operation.LINK_FEED: Role.GOVERNANCE,
    Operation.EXECUTE_REBALANCE: Role.REACTIVE_TRIGGER,
    Operation.PAUSE: Role.EMERGENCY,
    Operation.UNPAUSE: Role.GOVERNANCE,
    Operation.GRANT_ROLE: Role.GOVERNANCE,
    Operation.REVOKE_ROLE: Role.GOVERNANCE,
}


class AccessPolicy:
    """Holds role grants for one component and evaluates permissions."""

    def __init__(self, bootstrap: Dict[str, Iterable[Role]] | None = None):
        self._grants: Dict[str, Set[Role]] = {}
        self._lock = threading.Lock()
        for principal, roles in (bootstrap or {}).items():
            for role in roles:
                self._add(principal, Role(role))

    # ------------------------------------------------------------------
    def _add(self, principal: str, role: Role) -> bool:
        if not principal:
            raise InvalidParameter("principal must be non-empty")
        held = self._grants.setdefault(principal, set())
        if role in held:
            return False
        held.add(role)
        return True

    def roles_of(self, principal: str | None) -> FrozenSet[Role]:
        with self._lock:
            return frozenset(self._grants.get(principal or "", ()))

    def has_role(self, principal: str | None, role: Role) -> bool:
        return Role(role) in self.roles_of(principal)

    def is_allowed(self, principal: str | None, operation: Operation) -> bool:
        required = PERMISSIONS.get(operation)
        if required is None:
            return False
        return self.has_role(principal, required)

    def require(self, principal: str | None, operation: Operation) -> None:
        """Raise :class:`Unauthorized` unless *principal* may run *operation*."""
        if not self.is_allowed(principal, operation):
            required = PERMISSIONS.get(operation)
            _LOG.warning("denied %s for principal=%r", operation.value, principal)
            raise Unauthorized(
                f"{operation.value} requires role {required.value if required else 'n/a'}"
            )

    # ------------------------------------------------------------------
    def grant(self, actor: str, principal: str, role: Role) -> bool:
        """Grant *role* to *principal*; returns False if it was already held."""
        self.require(actor, Operation.GRANT_ROLE)
        with self._lock:
            return self._add(principal, Role(role))

    def revoke(self, actor: str, principal: str, role: Role) -> bool:
        self.require(actor, Operation.REVOKE_ROLE)
        with self._lock:
            held = self._grants.get(principal)
            if not held or Role(role) not in held:
                return False
            held.discard(Role(role))
            return True
