# backend/letlog/services/ownership.py
from __future__ import annotations

from typing import Optional

from ..domain.errors import ErrorKind, PolicyError, not_found
from ..domain.invitations import InvitationSnapshot
from ..domain.tenancy_lifecycle import TenancySnapshot
from .repository import PolicyRepository

# Ownership predicates: "does THIS user control THAT record". They are
# independent of the role table and are checked on top of a role check
# wherever a single resource instance is exposed.


def is_landlord_of_property(repo: PolicyRepository, *, user_id: int, property_id: int) -> bool:
    prop = repo.get_property(property_id)
    return prop is not None and prop.landlord_id == int(user_id)


def is_landlord_of_tenancy(tenancy: Optional[TenancySnapshot], *, user_id: int) -> bool:
    return tenancy is not None and tenancy.landlord_id == int(user_id)


def is_tenant_of_tenancy(tenancy: Optional[TenancySnapshot], *, user_id: int) -> bool:
    return tenancy is not None and int(user_id) in tenancy.tenant_ids


def can_manage_invitation(inv: InvitationSnapshot, tenancy: Optional[TenancySnapshot], *, user_id: int) -> bool:
    """The inviter or the current owner of the tenancy's property."""
    return inv.inviter_id == int(user_id) or is_landlord_of_tenancy(tenancy, user_id=user_id)


def must_get_tenancy(repo: PolicyRepository, *, tenancy_id: Optional[int]) -> TenancySnapshot:
    if tenancy_id is None:
        raise not_found("tenancy")
    row = repo.get_tenancy(tenancy_id)
    if row is None:
        raise not_found("tenancy", tenancy_id)
    return row


# Owner-scoped lookups: a missing id and a record the user does not control
# raise the same FORBIDDEN, so a denial never reveals which ids exist.


def must_get_owned_tenancy(
    repo: PolicyRepository, *, tenancy_id: Optional[int], user_id: int, denial: str
) -> TenancySnapshot:
    tenancy = repo.get_tenancy(tenancy_id) if tenancy_id is not None else None
    if tenancy is None or not is_landlord_of_tenancy(tenancy, user_id=user_id):
        raise PolicyError(ErrorKind.FORBIDDEN, denial)
    return tenancy


def must_get_party_tenancy(
    repo: PolicyRepository, *, tenancy_id: Optional[int], user_id: int, denial: str
) -> TenancySnapshot:
    """The tenancy when `user_id` is its landlord or one of its tenants."""
    tenancy = repo.get_tenancy(tenancy_id) if tenancy_id is not None else None
    if tenancy is None or not (
        is_landlord_of_tenancy(tenancy, user_id=user_id) or is_tenant_of_tenancy(tenancy, user_id=user_id)
    ):
        raise PolicyError(ErrorKind.FORBIDDEN, denial)
    return tenancy


def must_get_managed_invitation(
    repo: PolicyRepository, *, invitation: Optional[InvitationSnapshot], user_id: int, denial: str
) -> InvitationSnapshot:
    tenancy = repo.get_tenancy(invitation.tenancy_id) if invitation is not None else None
    if invitation is None or not can_manage_invitation(invitation, tenancy, user_id=user_id):
        raise PolicyError(ErrorKind.FORBIDDEN, denial)
    return invitation
