"""
Ledger executor for the record sharing platform.

The ledger is the single writer of the shared state. Every entry point runs
under one lock against a private copy of the stored state; the copy is
saved only when the transition completes, so a failed transition leaves no
trace. Committed transitions are appended to a hash-chained event log whose
Merkle root commits to the whole history.

Entry points never raise MedShareError; they return a Result carrying
either the value or the typed error.
"""

import hashlib
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from medshare.batch import BatchAccess
from medshare.catalog import RecordCatalog
from medshare.constants import (
    ACCESS_WINDOW_SECONDS, EMERGENCY_WINDOW_SECONDS, PERMISSION_WINDOW_SECONDS,
    REGISTRY_AUTHORITY_ADDRESS,
)
from medshare.crypto.key_manager import EmergencyKeyEscrow
from medshare.crypto.merkle import MerkleTree, merkle_root
from medshare.emergency import EmergencyAccess, verify_log
from medshare.errors import MedShareError, NotFound, Result
from medshare.escrow import IncentiveEscrow
from medshare.identity import IdentityRegistry, normalize_address
from medshare.models import LedgerEvent, LedgerState
from medshare.permissions import PermissionStateMachine
from medshare.roles import PermissionKind
from medshare.store import InMemoryStore, Store

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64


def event_hash(seq: int, timestamp: int, caller: str, command: str,
               details: Dict[str, Any], prev_hash: str) -> str:
    payload = json.dumps(
        {"seq": seq, "timestamp": timestamp, "caller": caller, "command": command,
         "details": details, "prev": prev_hash},
        sort_keys=True, separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode()).hexdigest()


class _Components:
    """Core components bound to one working copy of the state"""

    def __init__(self, ledger: "Ledger", state: LedgerState):
        self.state = state
        self.registry = IdentityRegistry(state, ledger.authority)
        self.catalog = RecordCatalog(state, self.registry, ledger.emergency_escrow)
        self.escrow = IncentiveEscrow(state)
        self.permissions = PermissionStateMachine(
            state, self.registry, self.catalog, self.escrow,
            ledger.permission_window, ledger.access_window,
        )
        self.emergency = EmergencyAccess(
            state, self.registry, self.catalog, self.permissions,
            ledger.emergency_escrow, ledger.emergency_window,
        )
        self.batch = BatchAccess(self.permissions, self.catalog)


class Ledger:
    def __init__(self, store: Optional[Store] = None, clock: Optional[Callable[[], int]] = None,
                 emergency_escrow: Optional[EmergencyKeyEscrow] = None,
                 authority: str = REGISTRY_AUTHORITY_ADDRESS,
                 permission_window: int = PERMISSION_WINDOW_SECONDS,
                 access_window: int = ACCESS_WINDOW_SECONDS,
                 emergency_window: int = EMERGENCY_WINDOW_SECONDS):
        self.store = store or InMemoryStore()
        self.clock = clock or (lambda: int(time.time()))
        self.emergency_escrow = emergency_escrow
        self.authority = normalize_address(authority)
        self.permission_window = permission_window
        self.access_window = access_window
        self.emergency_window = emergency_window
        self._lock = threading.RLock()

    # Execution

    def _transact(self, caller: str, command: str, action, details: Optional[Dict[str, Any]] = None) -> Result:
        """Run `action(components, caller, now)` as one all-or-nothing transition"""
        with self._lock:
            now = self.clock()
            try:
                caller = normalize_address(caller)
                state = self.store.load()
                value = action(_Components(self, state), caller, now)
            except MedShareError as e:
                logger.warning(f"{command} by {caller} rejected: {e.code}: {e.message}")
                return Result.failure(e)

            self._append_event(state, caller, command, details or {}, now)
            self.store.save(state)
            logger.info(f"{command} committed for {caller}")
            return Result.success(value)

    def _query(self, action) -> Result:
        """Run `action(components, now)` against a snapshot of the state"""
        with self._lock:
            now = self.clock()
            try:
                return Result.success(action(_Components(self, self.store.load()), now))
            except MedShareError as e:
                return Result.failure(e)

    def _append_event(self, state: LedgerState, caller: str, command: str,
                      details: Dict[str, Any], now: int):
        prev_hash = state.events[-1].hash if state.events else GENESIS_HASH
        seq = len(state.events)
        state.events.append(LedgerEvent(
            seq=seq,
            timestamp=now,
            caller=caller,
            command=command,
            details=details,
            prev_hash=prev_hash,
            hash=event_hash(seq, now, caller, command, details, prev_hash),
        ))

    # Identity

    def register(self, caller: str, role, public_key: str = "") -> Result:
        return self._transact(
            caller, "register",
            lambda c, me, now: c.registry.register(me, role, public_key, now),
            {"role": str(getattr(role, "value", role))},
        )

    def set_public_key(self, caller: str, public_key: str) -> Result:
        return self._transact(caller, "set_public_key",
                              lambda c, me, now: c.registry.set_public_key(me, public_key))

    def verify(self, caller: str, address: str) -> Result:
        return self._transact(
            caller, "verify",
            lambda c, me, now: c.registry.verify(me, normalize_address(address)),
            {"address": address.lower()},
        )

    def deactivate(self, caller: str, address: str) -> Result:
        return self._transact(
            caller, "deactivate",
            lambda c, me, now: c.registry.deactivate(me, normalize_address(address)),
            {"address": address.lower()},
        )

    def designate_emergency_provider(self, caller: str, address: str) -> Result:
        return self._transact(
            caller, "designate_emergency_provider",
            lambda c, me, now: c.registry.designate_emergency_provider(me, normalize_address(address)),
            {"address": address.lower()},
        )

    def get_user(self, address: str) -> Result:
        return self._query(lambda c, now: c.registry.get_user(normalize_address(address)))

    def check_user(self, address: str) -> Result:
        """(verified and active, role) for an address"""
        return self._query(lambda c, now: c.registry.check_user(normalize_address(address)))

    def get_public_key(self, address: str) -> Result:
        return self._query(lambda c, now: c.registry.get_public_key(normalize_address(address)))

    # Records

    def put_record(self, caller: str, owner: str, data_type, content_ref: str,
                   owner_wrapped_key: str, escrow_wrapped_key: Optional[str] = None) -> Result:
        return self._transact(
            caller, "put_record",
            lambda c, me, now: c.catalog.put(normalize_address(owner), me, data_type, content_ref,
                                             owner_wrapped_key, escrow_wrapped_key, now),
            {"owner": owner.lower(), "record": content_ref,
             "data_type": str(getattr(data_type, "value", data_type))},
        )

    def advance_record_status(self, caller: str, record_id: str, status) -> Result:
        return self._transact(
            caller, "advance_record_status",
            lambda c, me, now: c.catalog.advance_status(me, record_id, status),
            {"record": record_id, "status": str(getattr(status, "value", status))},
        )

    def invalidate_record(self, caller: str, record_id: str) -> Result:
        return self._transact(caller, "invalidate_record",
                              lambda c, me, now: c.catalog.invalidate(me, record_id),
                              {"record": record_id})

    def get_record(self, record_id: str) -> Result:
        return self._query(lambda c, now: c.catalog.get(record_id))

    def list_by_owner(self, owner: str) -> Result:
        """Lazy sequence of the owner's records, read from a snapshot"""
        return self._query(lambda c, now: c.catalog.list_by_owner(normalize_address(owner)))

    def list_by_uploader(self, uploader: str) -> Result:
        return self._query(lambda c, now: c.catalog.list_by_uploader(normalize_address(uploader)))

    # Permissions

    def request_permission(self, caller: str, owner: str, record_ref: str,
                           kind=PermissionKind.VIEW, incentive_amount: int = 0, value: int = 0) -> Result:
        """
        Ask `owner` for access to one record.

        Args:
            caller: Requesting address
            owner: Patient owning the record
            record_ref: Record id
            kind: Intended use of the access
            incentive_amount: Incentive offered, zero for a non-incentive request
            value: Amount carried by the call; must equal incentive_amount

        Returns:
            Result: the Pending PermissionRequest on success
        """
        return self._transact(
            caller, "request_permission",
            lambda c, me, now: c.permissions.request(me, normalize_address(owner), record_ref, kind,
                                                     incentive_amount, value, now),
            {"owner": owner.lower(), "record": record_ref, "incentive": incentive_amount},
        )

    def approve(self, caller: str, request_id: str, owner_private_key) -> Result:
        """Approve a single-record request; the private key is used for this call only"""
        return self._transact(
            caller, "approve",
            lambda c, me, now: c.permissions.approve(me, request_id, owner_private_key, now),
            {"request": request_id},
        )

    def reject(self, caller: str, request_id: str) -> Result:
        return self._transact(caller, "reject",
                              lambda c, me, now: c.permissions.reject(me, request_id, now),
                              {"request": request_id})

    def expire(self, caller: str, request_id: str) -> Result:
        """Settle a lapsed request; anyone may call it"""
        return self._transact(caller, "expire",
                              lambda c, me, now: c.permissions.expire(request_id, now),
                              {"request": request_id})

    def revoke(self, caller: str, grantee: str, record_ref: str) -> Result:
        return self._transact(
            caller, "revoke",
            lambda c, me, now: c.permissions.revoke(me, normalize_address(grantee), record_ref),
            {"grantee": grantee.lower(), "record": record_ref},
        )

    def get_permission_request(self, request_id: str) -> Result:
        return self._query(lambda c, now: c.permissions.view(request_id, now))

    def pending_requests_for_owner(self, owner: str) -> Result:
        return self._query(lambda c, now: c.permissions.pending_for_owner(normalize_address(owner), now))

    def requests_by_requester(self, requester: str) -> Result:
        return self._query(lambda c, now: c.permissions.by_requester(normalize_address(requester), now))

    def check_access(self, grantee: str, record_ref: str) -> Result:
        return self._query(lambda c, now: c.permissions.check_access(normalize_address(grantee), record_ref, now))

    def get_wrapped_key(self, caller: str, record_ref: str) -> Result:
        return self._query(lambda c, now: c.permissions.get_wrapped_key(normalize_address(caller), record_ref, now))

    def balance_of(self, address: str) -> Result:
        return self._query(lambda c, now: c.escrow.balance_of(normalize_address(address)))

    # Emergency

    def emergency_access(self, caller: str, patient: str) -> Result:
        # The patient address is validated by the emergency component itself
        return self._transact(
            caller, "emergency_access",
            lambda c, me, now: c.emergency.grant(me, patient, now),
            {"patient": str(patient).lower()},
        )

    def end_emergency_access(self, caller: str, responder: str, patient: str) -> Result:
        return self._transact(
            caller, "end_emergency_access",
            lambda c, me, now: c.emergency.end(me, normalize_address(responder), normalize_address(patient)),
            {"responder": responder.lower(), "patient": patient.lower()},
        )

    def check_emergency_access(self, responder: str, patient: str) -> Result:
        return self._query(
            lambda c, now: c.emergency.check(normalize_address(responder), normalize_address(patient), now)
        )

    def emergency_log(self) -> Result:
        return self._query(lambda c, now: list(c.state.emergency_log))

    # Batch

    def request_batch_access(self, caller: str, owner: str, kind=PermissionKind.VIEW,
                             incentive_amount: int = 0, value: int = 0) -> Result:
        return self._transact(
            caller, "request_batch_access",
            lambda c, me, now: c.batch.request(me, normalize_address(owner), kind, incentive_amount, value, now),
            {"owner": owner.lower(), "incentive": incentive_amount},
        )

    def approve_batch_access(self, caller: str, request_id: str, owner_private_key) -> Result:
        return self._transact(
            caller, "approve_batch_access",
            lambda c, me, now: c.batch.approve(me, request_id, owner_private_key, now),
            {"request": request_id},
        )

    # Audit

    def audit_log(self) -> Result:
        return self._query(lambda c, now: list(c.state.events))

    def audit_root(self) -> Result:
        return self._query(lambda c, now: merkle_root(e.hash for e in c.state.events))

    def audit_proof(self, seq: int) -> Result:
        """Inclusion proof of one event under the current audit root"""
        def build(c, now):
            tree = MerkleTree(e.hash for e in c.state.events)
            try:
                path = tree.proof(seq)
            except IndexError:
                raise NotFound(f"No ledger event {seq}")
            return {"leaf": tree.leaves[seq], "path": path, "root": tree.root}
        return self._query(build)

    def verify_audit_chain(self) -> Result:
        """Recompute both the event chain and the emergency log chain"""
        def check(c, now):
            prev_hash = GENESIS_HASH
            for event in c.state.events:
                expected = event_hash(event.seq, event.timestamp, event.caller, event.command,
                                      event.details, prev_hash)
                if event.prev_hash != prev_hash or event.hash != expected:
                    return False
                prev_hash = event.hash
            return verify_log(c.state.emergency_log)
        return self._query(check)
