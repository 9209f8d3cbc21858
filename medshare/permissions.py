"""
Permission state machine for access to patient records.

A request moves from Pending to exactly one of Approved, Rejected or
Expired. Expiry is evaluated lazily: a Pending request whose window has
passed is reported as Expired by every reader and can no longer be
approved or rejected, even before an explicit expire() transition.

Approving a request is the point where key material crosses a trust
boundary: the owner's private key unwraps the record key, which is then
wrapped again for the requester and stored as a GrantedAccess row.
"""

import logging
from typing import List, Optional

from medshare.catalog import RecordCatalog
from medshare.crypto.key_manager import unwrap_b64, wrap_b64
from medshare.errors import (
    AccessDenied, IncentiveMismatch, InvalidPermissionKind, NotExpired, NotAPatient, NotFound, NotOwner,
    NotPending, OwnerNotVerified, RecordInvalid, RecordOwnerMismatch, RequestExpired,
    RequestKindMismatch, RequesterNotVerified, RoleNotPermitted, SelfRequest,
)
from medshare.escrow import IncentiveEscrow
from medshare.identity import IdentityRegistry
from medshare.models import GrantedAccess, LedgerState, PermissionRequest, Record
from medshare.roles import PermissionKind, RecordStatus, RequestStatus, Role, can_request_access, parse_enum

logger = logging.getLogger(__name__)


def grant_key(grantee: str, record_ref: str) -> str:
    return f"{grantee}|{record_ref}"


def is_expired(request: PermissionRequest, now: int) -> bool:
    """A request is expired from `expires_at` onwards"""
    return now >= request.expires_at


def effective_status(request: PermissionRequest, now: int) -> RequestStatus:
    if request.status is RequestStatus.PENDING and is_expired(request, now):
        return RequestStatus.EXPIRED
    return request.status


class PermissionStateMachine:
    def __init__(self, state: LedgerState, registry: IdentityRegistry, catalog: RecordCatalog,
                 escrow: IncentiveEscrow, permission_window: int, access_window: int):
        self.state = state
        self.registry = registry
        self.catalog = catalog
        self.escrow = escrow
        self.permission_window = permission_window
        self.access_window = access_window

    # Requests

    def request(self, requester: str, owner: str, record_ref: str, kind: PermissionKind = PermissionKind.VIEW,
                incentive_amount: int = 0, value: int = 0, now: int = 0) -> PermissionRequest:
        """
        Open a Pending request for one record.

        Args:
            requester: Address asking for access
            owner: The patient owning the record
            record_ref: Record id; must belong to `owner`
            kind: What the access will be used for
            incentive_amount: Incentive offered to the owner, zero for none
            value: Amount carried by the call, escrowed until the request resolves
            now: Current time

        Returns:
            PermissionRequest: The new request
        """
        self.check_parties(requester, owner)
        if not record_ref:
            raise NotFound("A single-record request needs a record reference")
        record = self.catalog.get(record_ref)
        if record.owner != owner:
            raise RecordOwnerMismatch(f"Record {record_ref} is not owned by {owner}")
        if record.status is RecordStatus.INVALID:
            raise RecordInvalid(f"Record {record_ref} has been invalidated")
        return self.open_request(requester, owner, record_ref, kind, incentive_amount, value, now)

    def check_parties(self, requester: str, owner: str):
        if not self.registry.is_verified(requester):
            raise RequesterNotVerified(f"Requester {requester} is not verified")
        requester_role = self.registry.get_user(requester).role
        if not can_request_access(requester_role):
            raise RoleNotPermitted(f"Role {requester_role.value} cannot request access to records")
        if not self.registry.is_verified(owner):
            raise OwnerNotVerified(f"Owner {owner} is not verified")
        if self.registry.get_user(owner).role is not Role.PATIENT:
            raise NotAPatient(f"{owner} is not a patient")
        if requester == owner:
            raise SelfRequest("Owners cannot request access to their own records")

    def open_request(self, requester: str, owner: str, record_ref: str, kind: PermissionKind,
                     incentive_amount: int, value: int, now: int) -> PermissionRequest:
        """Create the request once the parties are checked; an empty record_ref denotes a batch"""
        kind = parse_enum(PermissionKind, kind, InvalidPermissionKind)
        if incentive_amount < 0 or value != incentive_amount:
            raise IncentiveMismatch(f"Call carries {value}, incentive is {incentive_amount}")

        request_id = str(self.state.next_request_id)
        self.state.next_request_id += 1
        request = PermissionRequest(
            id=request_id,
            requester=requester,
            owner=owner,
            record_ref=record_ref,
            kind=kind,
            incentive_based=incentive_amount > 0,
            incentive_amount=incentive_amount,
            requested_at=now,
            expires_at=now + self.permission_window,
        )
        self.state.requests[request_id] = request
        self.escrow.hold(request_id, value)
        return request

    def get(self, request_id: str) -> PermissionRequest:
        request = self.state.requests.get(request_id)
        if request is None:
            raise NotFound(f"Permission request {request_id} not found")
        return request

    def view(self, request_id: str, now: int) -> PermissionRequest:
        """The request as every reader must see it, with expiry applied"""
        request = self.get(request_id)
        return request.model_copy(update={"status": effective_status(request, now)})

    def pending_for_owner(self, owner: str, now: int) -> List[PermissionRequest]:
        return [
            r for r in self.state.requests.values()
            if r.owner == owner and effective_status(r, now) is RequestStatus.PENDING
        ]

    def by_requester(self, requester: str, now: int) -> List[PermissionRequest]:
        return [
            r.model_copy(update={"status": effective_status(r, now)})
            for r in self.state.requests.values() if r.requester == requester
        ]

    # Transitions

    def require_open(self, caller: str, request_id: str, now: int) -> PermissionRequest:
        """Checks shared by approve and reject, in the order callers observe them"""
        request = self.get(request_id)
        if request.status in (RequestStatus.APPROVED, RequestStatus.REJECTED):
            raise NotPending(f"Request {request_id} is already {request.status.value}")
        if request.status is RequestStatus.EXPIRED or is_expired(request, now):
            raise RequestExpired(f"Request {request_id} expired at {request.expires_at}")
        if caller != request.owner:
            raise NotOwner(f"Only {request.owner} can decide request {request_id}")
        return request

    def approve(self, caller: str, request_id: str, owner_private_key, now: int) -> PermissionRequest:
        request = self.require_open(caller, request_id, now)
        if request.is_batch:
            raise RequestKindMismatch(f"Request {request_id} is a batch request")
        if not self.registry.is_verified(request.requester):
            raise RequesterNotVerified(f"Requester {request.requester} is no longer verified")

        record = self.catalog.get(request.record_ref)
        if record.status is RecordStatus.INVALID:
            raise RecordInvalid(f"Record {record.id} has been invalidated")

        self.grant_from_owner(record, request.requester, owner_private_key, now,
                              now + self.access_window, request_id=request.id)
        self.conclude(request, RequestStatus.APPROVED, now, [record.id])
        return request

    def grant_from_owner(self, record: Record, grantee: str, owner_private_key, now: int,
                         expires_at: int, request_id: Optional[str] = None) -> GrantedAccess:
        """Re-wrap the record key from the owner's wrap to the grantee's public key"""
        grantee_public_key = self.registry.get_public_key(grantee)
        symmetric_key = unwrap_b64(record.owner_wrapped_key, owner_private_key)
        return self.issue_grant(record, grantee, wrap_b64(symmetric_key, grantee_public_key),
                                now, expires_at, request_id=request_id)

    def issue_grant(self, record: Record, grantee: str, grantee_wrapped_key: str, now: int,
                    expires_at: int, request_id: Optional[str] = None, emergency: bool = False) -> GrantedAccess:
        """
        Store the grantee's wrapped key.

        Approved grants and emergency grants live in separate tables, so an
        emergency override never replaces or shortens access the owner
        approved. Within one table a new grant replaces the earlier one.
        """
        grant = GrantedAccess(
            owner=record.owner,
            grantee=grantee,
            record_ref=record.id,
            data_type=record.data_type,
            grantee_wrapped_key=grantee_wrapped_key,
            granted_at=now,
            expires_at=expires_at,
            request_id=request_id,
            emergency=emergency,
        )
        table = self.state.emergency_access if emergency else self.state.grants
        table[grant_key(grantee, record.id)] = grant
        return grant

    def conclude(self, request: PermissionRequest, status: RequestStatus, now: int,
                 granted_records: Optional[List[str]] = None):
        request.status = status
        request.decided_at = now
        if status is RequestStatus.APPROVED:
            request.granted_records = list(granted_records or [])
            self.escrow.release(request.id, request.owner)
        else:
            self.escrow.refund(request.id, request.requester)

    def reject(self, caller: str, request_id: str, now: int) -> PermissionRequest:
        request = self.require_open(caller, request_id, now)
        self.conclude(request, RequestStatus.REJECTED, now)
        return request

    def expire(self, request_id: str, now: int) -> PermissionRequest:
        """Record the expiry of a lapsed request and refund its incentive"""
        request = self.get(request_id)
        if request.status is not RequestStatus.PENDING:
            raise NotPending(f"Request {request_id} is already {request.status.value}")
        if not is_expired(request, now):
            raise NotExpired(f"Request {request_id} is valid until {request.expires_at}")
        self.conclude(request, RequestStatus.EXPIRED, now)
        return request

    # Access

    def live_grant(self, grantee: str, record_ref: str, now: int) -> Optional[GrantedAccess]:
        """The grantee's unexpired grant, preferring an approved grant over an emergency one"""
        key = grant_key(grantee, record_ref)
        for grant in (self.state.grants.get(key), self.state.emergency_access.get(key)):
            if grant is not None and now < grant.expires_at:
                return grant
        return None

    def check_access(self, grantee: str, record_ref: str, now: int) -> bool:
        return self.live_grant(grantee, record_ref, now) is not None

    def get_wrapped_key(self, caller: str, record_ref: str, now: int) -> str:
        """The record key wrapped for `caller`, if the caller may read the record"""
        record = self.catalog.get(record_ref)
        if caller == record.owner:
            return record.owner_wrapped_key
        grant = self.live_grant(caller, record_ref, now)
        if grant is None:
            raise AccessDenied(f"{caller} has no live grant for {record_ref}")
        return grant.grantee_wrapped_key

    def revoke(self, caller: str, grantee: str, record_ref: str) -> GrantedAccess:
        """Delete the grantee's grants on a record; keys already unwrapped stay known to them"""
        record = self.catalog.get(record_ref)
        if caller != record.owner:
            raise NotOwner(f"Only {record.owner} can revoke access to {record_ref}")
        key = grant_key(grantee, record_ref)
        approved = self.state.grants.pop(key, None)
        emergency = self.state.emergency_access.pop(key, None)
        if approved is None and emergency is None:
            raise NotFound(f"{grantee} holds no grant for {record_ref}")
        return approved or emergency
