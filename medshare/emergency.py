"""
Emergency access override.

Verified ambulances and designated providers can obtain time-boxed access
to every record of a patient without the patient's approval. The record
keys are recovered from their emergency escrow wrap, which is a delegated
trust escalation: each grant is appended to a hash-chained log that names
the responder, the patient and the time.
"""

import hashlib
import json
import logging
from typing import List, Optional

from medshare.catalog import RecordCatalog
from medshare.crypto.key_manager import EmergencyKeyEscrow
from medshare.errors import (
    EmergencyEscrowUnavailable, InvalidAddress, InvalidPatientAddress, NotFound, NotOwner,
    ResponderNotAuthorized, UnwrapFailed,
)
from medshare.identity import IdentityRegistry, normalize_address
from medshare.models import EmergencyGrant, EmergencyLogEntry, LedgerState
from medshare.permissions import PermissionStateMachine, grant_key
from medshare.roles import RecordStatus, Role, is_emergency_responder

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64


def emergency_key(responder: str, patient: str) -> str:
    return f"{responder}|{patient}"


def log_entry_hash(prev_hash: str, responder: str, patient: str, timestamp: int, record_refs: List[str]) -> str:
    payload = json.dumps(
        {"prev": prev_hash, "responder": responder, "patient": patient,
         "timestamp": timestamp, "records": record_refs},
        sort_keys=True, separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode()).hexdigest()


class EmergencyAccess:
    def __init__(self, state: LedgerState, registry: IdentityRegistry, catalog: RecordCatalog,
                 permissions: PermissionStateMachine, escrow_key: Optional[EmergencyKeyEscrow],
                 emergency_window: int):
        self.state = state
        self.registry = registry
        self.catalog = catalog
        self.permissions = permissions
        self.escrow_key = escrow_key
        self.emergency_window = emergency_window

    def _check_patient(self, patient: str) -> str:
        try:
            patient = normalize_address(patient)
        except InvalidAddress:
            raise InvalidPatientAddress(f"Invalid patient address: {patient!r}")
        user = self.registry.find_user(patient)
        if user is None or user.role is not Role.PATIENT:
            raise InvalidPatientAddress(f"{patient} is not a registered patient")
        return patient

    def _check_responder(self, responder: str):
        user = self.registry.find_user(responder)
        if user is None or not (user.verified and user.active):
            raise ResponderNotAuthorized(f"{responder} is not a verified responder")
        if not is_emergency_responder(user.role, user.emergency_capable):
            raise ResponderNotAuthorized("Only ambulance services and designated providers can request emergency access")

    def grant(self, responder: str, patient: str, now: int) -> EmergencyGrant:
        """
        Give `responder` access to all of `patient`'s records for the emergency window.

        Returns:
            EmergencyGrant: The grant, listing covered and skipped records
        """
        patient = self._check_patient(patient)
        self._check_responder(responder)
        if self.escrow_key is None:
            raise EmergencyEscrowUnavailable("No emergency escrow key is configured")
        responder_public_key = self.registry.get_public_key(responder)

        expires_at = now + self.emergency_window
        covered, skipped = [], []
        for record in self.catalog.list_by_owner(patient):
            if record.escrow_wrapped_key is None or record.status is RecordStatus.INVALID:
                skipped.append(record.id)
                continue
            try:
                wrapped = self.escrow_key.rewrap(record.escrow_wrapped_key, responder_public_key)
            except UnwrapFailed as e:
                logger.error(f"Escrow wrap of record {record.id} cannot be opened: {e.message}")
                skipped.append(record.id)
                continue
            self.permissions.issue_grant(record, responder, wrapped, now, expires_at, emergency=True)
            covered.append(record.id)

        grant = EmergencyGrant(
            responder=responder,
            patient=patient,
            granted_at=now,
            expires_at=expires_at,
            record_refs=covered,
            skipped_records=skipped,
        )
        self.state.emergency_grants[emergency_key(responder, patient)] = grant
        self._append_log(responder, patient, now, covered)
        logger.warning(f"Emergency access to {patient} granted to {responder} until {expires_at}")
        if skipped:
            logger.warning(f"Emergency grant for {patient} skipped {len(skipped)} record(s): {skipped}")
        return grant

    def _append_log(self, responder: str, patient: str, now: int, record_refs: List[str]):
        log = self.state.emergency_log
        prev_hash = log[-1].entry_hash if log else GENESIS_HASH
        log.append(EmergencyLogEntry(
            responder=responder,
            patient=patient,
            timestamp=now,
            record_refs=record_refs,
            prev_hash=prev_hash,
            entry_hash=log_entry_hash(prev_hash, responder, patient, now, record_refs),
        ))

    def check(self, responder: str, patient: str, now: int) -> bool:
        grant = self.state.emergency_grants.get(emergency_key(responder, patient))
        return grant is not None and grant.active and now < grant.expires_at

    def end(self, caller: str, responder: str, patient: str) -> EmergencyGrant:
        """Close an emergency grant early; patient or responder may do this"""
        grant = self.state.emergency_grants.get(emergency_key(responder, patient))
        if grant is None or not grant.active:
            raise NotFound(f"No active emergency grant for {responder} over {patient}")
        if caller != patient and caller != responder:
            raise NotOwner(f"{caller} cannot end this emergency grant")
        grant.active = False
        for record_ref in grant.record_refs:
            self.state.emergency_access.pop(grant_key(responder, record_ref), None)
        return grant


def verify_log(entries: List[EmergencyLogEntry]) -> bool:
    """Recompute the emergency log chain"""
    prev_hash = GENESIS_HASH
    for entry in entries:
        if entry.prev_hash != prev_hash:
            return False
        if entry.entry_hash != log_entry_hash(prev_hash, entry.responder, entry.patient,
                                              entry.timestamp, entry.record_refs):
            return False
        prev_hash = entry.entry_hash
    return True
