# backend/letlog/domain/route_permissions.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal, Optional, Tuple, Union

from .roles import ALL_ROLES, Role

# -----------------------------------------------------------------------------
# Route permissions
# -----------------------------------------------------------------------------
# The table is an allow-list for PROTECTED resources, not deny-all:
# a route with no matching entry is public and every caller may access it.
#
# Adding a new protected route therefore REQUIRES adding an entry here,
# otherwise it is silently public.
#
# Role checks only. "Is this landlord the owner of that property" is an
# ownership predicate (services/ownership.py) and is checked in addition.
# -----------------------------------------------------------------------------

PUBLIC: Literal["public"] = "public"


@dataclass(frozen=True)
class RoutePermission:
    path: str
    label: str
    roles: frozenset[Role]


def _norm_path(path: Optional[str]) -> str:
    p = (path or "").strip()
    if not p:
        return "/"
    # drop query / fragment
    for sep in ("?", "#"):
        if sep in p:
            p = p.split(sep, 1)[0]
    if not p.startswith("/"):
        p = "/" + p
    if len(p) > 1:
        p = p.rstrip("/") or "/"
    return p


def _matches(prefix: str, path: str) -> bool:
    if prefix == "/":
        return True
    return path == prefix or path.startswith(prefix + "/")


class PermissionTable:
    """Immutable prefix table. Built once at import/startup."""

    def __init__(self, entries: Iterable[RoutePermission]):
        norm: list[RoutePermission] = []
        seen: set[str] = set()
        for e in entries:
            p = _norm_path(e.path)
            if p in seen:
                raise ValueError(f"duplicate route permission for {p}")
            seen.add(p)
            norm.append(RoutePermission(path=p, label=e.label, roles=frozenset(e.roles)))
        # Longest prefix first so the first match is the most specific one.
        self._entries: Tuple[RoutePermission, ...] = tuple(sorted(norm, key=lambda e: len(e.path), reverse=True))

    @property
    def entries(self) -> Tuple[RoutePermission, ...]:
        return self._entries

    def match(self, path: Optional[str]) -> Optional[RoutePermission]:
        p = _norm_path(path)
        for e in self._entries:
            if _matches(e.path, p):
                return e
        return None


def _perm(path: str, label: str, *roles: Role) -> RoutePermission:
    return RoutePermission(path=path, label=label, roles=frozenset(roles))


DEFAULT_PERMISSIONS = PermissionTable(
    [
        # Shared
        _perm("/dashboard", "Dashboard", *ALL_ROLES),
        _perm("/settings", "Settings", *ALL_ROLES),
        _perm("/reviews", "Reviews", *ALL_ROLES),
        # Landlord only
        _perm("/properties", "Properties", Role.LANDLORD),
        _perm("/tenancies", "Tenancies", Role.LANDLORD),
        _perm("/compliance", "Compliance", Role.LANDLORD),
        _perm("/calendar", "Calendar", Role.LANDLORD),
        # Landlord + tenant
        _perm("/issues", "Issues", Role.LANDLORD, Role.TENANT),
        # Landlord + contractor
        _perm("/tenders", "Tenders", Role.LANDLORD, Role.CONTRACTOR),
        _perm("/quotes", "Quotes", Role.LANDLORD, Role.CONTRACTOR),
    ]
)

# Order used by navigation menus.
NAV_ORDER = (
    "/dashboard",
    "/properties",
    "/tenancies",
    "/issues",
    "/tenders",
    "/quotes",
    "/compliance",
    "/calendar",
    "/reviews",
    "/settings",
)


def roles_for(table: PermissionTable, path: Optional[str]) -> Union[frozenset[Role], Literal["public"]]:
    entry = table.match(path)
    if entry is None:
        return PUBLIC
    return entry.roles


def can_access(role: Optional[Role], path: Optional[str], table: PermissionTable = DEFAULT_PERMISSIONS) -> bool:
    """
    Total and deterministic: unregistered routes are public, registered
    routes need one of their roles. A missing role only reaches public routes.
    """
    allowed = roles_for(table, path)
    if allowed == PUBLIC:
        return True
    return role is not None and role in allowed


def visible_routes(role: Role, table: PermissionTable = DEFAULT_PERMISSIONS) -> list[RoutePermission]:
    by_path = {e.path: e for e in table.entries}
    ordered = [by_path[p] for p in NAV_ORDER if p in by_path]
    ordered += [e for e in sorted(table.entries, key=lambda e: e.path) if e.path not in NAV_ORDER]
    return [e for e in ordered if role in e.roles]


def default_redirect(role: Optional[Role]) -> str:
    return "/dashboard"
