"""
Identity registry for the record sharing platform.

Maps addresses to a role, a verification flag, an active flag and the RSA
public key used to wrap record keys for that address. Roles are assigned
once at registration; verification and deactivation are reserved to the
registry authority.
"""

import logging
from typing import Optional, Tuple
from web3 import Web3

from medshare.crypto.key_manager import export_public_key, load_public_key
from medshare.errors import (
    AlreadyRegistered, InvalidAddress, InvalidRole, KeyAlreadySet, NoKeyOnFile,
    NotFound, NotRegistryAuthority,
)
from medshare.models import LedgerState, User
from medshare.roles import Role, parse_enum

logger = logging.getLogger(__name__)


def normalize_address(address: str) -> str:
    """Lower-case a wallet address after checking it is a 20-byte hex address.

    Raises:
        InvalidAddress: if the address is malformed
    """
    if not isinstance(address, str) or not Web3.is_address(address.lower()):
        raise InvalidAddress(f"Not a valid address: {address!r}")
    return address.lower()


class IdentityRegistry:
    def __init__(self, state: LedgerState, authority: str):
        self.state = state
        self.authority = authority.lower()

    def _require_authority(self, caller: str):
        if caller != self.authority:
            raise NotRegistryAuthority(f"{caller} is not the registry authority")

    def register(self, address: str, role: Role, public_key: str = "", now: int = 0) -> User:
        """
        Register an address with a role and, optionally, its wrapping key.

        Args:
            address: The normalized wallet address
            role: Role to hold for the lifetime of the identity
            public_key: base64 SPKI DER or PEM RSA public key, may be empty
            now: Registration timestamp

        Returns:
            User: The new registry entry
        """
        role = parse_enum(Role, role, InvalidRole)
        if role is Role.NONE:
            raise InvalidRole("Cannot register with role None")

        existing = self.state.users.get(address)
        if existing is not None and existing.role is not Role.NONE:
            raise AlreadyRegistered(f"{address} is already registered as {existing.role.value}")

        user = User(
            address=address,
            role=role,
            public_key=self._canonical_key(public_key) if public_key else "",
            registered_at=now,
        )
        self.state.users[address] = user
        return user

    def _canonical_key(self, public_key: str) -> str:
        # Raises InvalidPublicKey for anything that cannot wrap keys
        return export_public_key(load_public_key(public_key))

    def set_public_key(self, address: str, public_key: str) -> User:
        user = self.get_user(address)
        if user.public_key:
            raise KeyAlreadySet(f"{address} already has a public key on file")
        user.public_key = self._canonical_key(public_key)
        return user

    def verify(self, caller: str, address: str) -> User:
        self._require_authority(caller)
        user = self.get_user(address)
        user.verified = True
        return user

    def deactivate(self, caller: str, address: str) -> User:
        self._require_authority(caller)
        user = self.get_user(address)
        user.active = False
        return user

    def designate_emergency_provider(self, caller: str, address: str) -> User:
        self._require_authority(caller)
        user = self.get_user(address)
        if user.role is not Role.PROVIDER:
            raise InvalidRole(f"Only providers can be designated for emergencies, {address} is {user.role.value}")
        user.emergency_capable = True
        return user

    def find_user(self, address: str) -> Optional[User]:
        user = self.state.users.get(address)
        if user is None or user.role is Role.NONE:
            return None
        return user

    def get_user(self, address: str) -> User:
        user = self.find_user(address)
        if user is None:
            raise NotFound(f"No user registered at {address}")
        return user

    def is_verified(self, address: str) -> bool:
        """Registered, verified by the authority and still active"""
        user = self.find_user(address)
        return user is not None and user.verified and user.active

    def check_user(self, address: str) -> Tuple[bool, Role]:
        user = self.find_user(address)
        if user is None:
            return False, Role.NONE
        return user.verified and user.active, user.role

    def get_public_key(self, address: str) -> str:
        user = self.get_user(address)
        if not user.public_key:
            raise NoKeyOnFile(f"{address} has not registered a public key")
        return user.public_key
