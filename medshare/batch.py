"""
Batch access: one approval covering every record of an owner.

Batch grants are snapshots. Approval wraps the key of each record the owner
holds at that moment; records uploaded afterwards need a new request.
"""

import logging

from medshare.catalog import RecordCatalog
from medshare.errors import RequestKindMismatch, RequesterNotVerified
from medshare.models import PermissionRequest
from medshare.permissions import PermissionStateMachine
from medshare.roles import PermissionKind, RecordStatus, RequestStatus

logger = logging.getLogger(__name__)


class BatchAccess:
    def __init__(self, permissions: PermissionStateMachine, catalog: RecordCatalog):
        self.permissions = permissions
        self.catalog = catalog

    def request(self, requester: str, owner: str, kind: PermissionKind = PermissionKind.VIEW,
                incentive_amount: int = 0, value: int = 0, now: int = 0) -> PermissionRequest:
        self.permissions.check_parties(requester, owner)
        return self.permissions.open_request(requester, owner, "", kind, incentive_amount, value, now)

    def approve(self, caller: str, request_id: str, owner_private_key, now: int) -> PermissionRequest:
        permissions = self.permissions
        request = permissions.require_open(caller, request_id, now)
        if not request.is_batch:
            raise RequestKindMismatch(f"Request {request_id} is for a single record")
        if not permissions.registry.is_verified(request.requester):
            raise RequesterNotVerified(f"Requester {request.requester} is no longer verified")

        expires_at = now + permissions.access_window
        covered = []
        for record in self.catalog.list_by_owner(request.owner):
            if record.status is RecordStatus.INVALID:
                continue
            permissions.grant_from_owner(record, request.requester, owner_private_key, now,
                                         expires_at, request_id=request.id)
            covered.append(record.id)

        permissions.conclude(request, RequestStatus.APPROVED, now, covered)
        logger.info(f"Batch request {request_id} covers {len(covered)} record(s)")
        return request
