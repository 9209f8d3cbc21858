"""
Key management module for the record sharing platform.
Handles generation, storage and serialization of RSA key pairs and the
wrapping of record keys under a recipient's public key.
"""

import os
import base64
import logging
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa, padding
from cryptography.hazmat.backends import default_backend

from medshare.constants import (
    RSA_KEY_SIZE, MIN_RSA_KEY_SIZE, SECURE_KEYS_DIR, EMERGENCY_ESCROW_KEY_FILE, SYMMETRIC_KEY_SIZE,
)
from medshare.errors import InvalidEscrowWrap, InvalidPublicKey, UnwrapFailed

logger = logging.getLogger(__name__)

OAEP_PADDING = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None
)


def generate_rsa_key_pair(key_size=RSA_KEY_SIZE):
    """Generate an RSA key pair

    Returns:
        tuple: (private_key, public_key)
    """
    if key_size < MIN_RSA_KEY_SIZE:
        raise ValueError(f"RSA keys must be at least {MIN_RSA_KEY_SIZE} bits")
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
        backend=default_backend()
    )
    return private_key, private_key.public_key()


def export_public_key(public_key):
    """Serialize a public key as base64 SPKI DER (the form kept in the registry)"""
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return base64.b64encode(der).decode('ascii')


def export_private_key(private_key):
    """Serialize a private key as unencrypted PKCS8 PEM"""
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )


def _parse_public_key(public_key):
    try:
        if isinstance(public_key, str):
            public_key = public_key.encode('ascii')
        if public_key.startswith(b"-----BEGIN"):
            return serialization.load_pem_public_key(public_key, backend=default_backend())
        try:
            der = base64.b64decode(public_key, validate=True)
        except ValueError:
            der = public_key
        return serialization.load_der_public_key(der, backend=default_backend())
    except ValueError as e:
        raise InvalidPublicKey(f"Cannot parse public key: {e}")


def load_public_key(public_key):
    """Load a public key from PEM, DER or base64 DER.

    Raises:
        InvalidPublicKey: if the bytes are not an RSA key of at least 2048 bits
    """
    if isinstance(public_key, rsa.RSAPublicKey):
        key = public_key
    else:
        key = _parse_public_key(public_key)
    if not isinstance(key, rsa.RSAPublicKey):
        raise InvalidPublicKey("Key wrapping requires an RSA public key")
    if key.key_size < MIN_RSA_KEY_SIZE:
        raise InvalidPublicKey(f"RSA public key is {key.key_size} bits, minimum is {MIN_RSA_KEY_SIZE}")
    return key


def load_private_key(private_key):
    """Load a private key from PEM, DER or base64 DER.

    Raises:
        UnwrapFailed: if the bytes are not a usable RSA private key
    """
    if isinstance(private_key, rsa.RSAPrivateKey):
        return private_key
    try:
        if isinstance(private_key, str):
            private_key = private_key.encode('ascii')
        if private_key.lstrip().startswith(b"-----BEGIN"):
            key = serialization.load_pem_private_key(private_key, password=None, backend=default_backend())
        else:
            try:
                der = base64.b64decode(private_key, validate=True)
            except ValueError:
                der = private_key
            key = serialization.load_der_private_key(der, password=None, backend=default_backend())
    except (ValueError, TypeError) as e:
        raise UnwrapFailed(f"Cannot load private key: {e}")
    if not isinstance(key, rsa.RSAPrivateKey):
        raise UnwrapFailed("Key unwrapping requires an RSA private key")
    return key


def wrap(symmetric_key, recipient_public_key):
    """Wrap a record key under the recipient's public key using RSA-OAEP.

    OAEP is randomized, so two wraps of the same key differ byte-wise.
    """
    public_key = load_public_key(recipient_public_key)
    return public_key.encrypt(bytes(symmetric_key), OAEP_PADDING)


def unwrap(wrapped, recipient_private_key):
    """Recover a record key with the recipient's private key.

    Raises:
        UnwrapFailed: on key mismatch or corrupted input
    """
    private_key = load_private_key(recipient_private_key)
    try:
        return private_key.decrypt(bytes(wrapped), OAEP_PADDING)
    except ValueError:
        raise UnwrapFailed("Wrapped key does not match this private key")


def wrap_b64(symmetric_key, recipient_public_key):
    return base64.b64encode(wrap(symmetric_key, recipient_public_key)).decode('ascii')


def unwrap_b64(wrapped_b64, recipient_private_key):
    try:
        wrapped = base64.b64decode(wrapped_b64, validate=True)
    except ValueError:
        raise UnwrapFailed("Wrapped key is not valid base64")
    return unwrap(wrapped, recipient_private_key)


class KeyManager:
    """Local key store for the key pairs of addresses this process acts for"""

    def __init__(self, keys_dir=SECURE_KEYS_DIR):
        self.keys_dir = keys_dir
        self.key_store = {}

    def _key_file(self, address):
        return os.path.join(self.keys_dir, f"{address.lower()}.pem")

    def generate_key_pair(self, address, persist=False):
        """Generate (or replace) the key pair for an address

        Args:
            address: Wallet address
            persist: Also write the private key PEM to the keys directory

        Returns:
            RSAPrivateKey: the new private key
        """
        private_key, _ = generate_rsa_key_pair()
        self.key_store[address.lower()] = private_key
        if persist:
            os.makedirs(self.keys_dir, exist_ok=True)
            with open(self._key_file(address), "wb") as f:
                f.write(export_private_key(private_key))
            logger.info(f"Saved key pair for {address} to {self.keys_dir}")
        return private_key

    def load_key_pair(self, address):
        """Load a previously persisted key pair"""
        with open(self._key_file(address), "rb") as f:
            private_key = load_private_key(f.read())
        self.key_store[address.lower()] = private_key
        return private_key

    def get_private_key(self, address):
        """Get the private key for an address

        Raises:
            KeyError: if no key pair is held for the address
        """
        address = address.lower()
        if address not in self.key_store:
            if os.path.exists(self._key_file(address)):
                return self.load_key_pair(address)
            raise KeyError(f"No private key held for {address}")
        return self.key_store[address]

    def get_public_key_b64(self, address):
        return export_public_key(self.get_private_key(address).public_key())


class EmergencyKeyEscrow:
    """Key pair of the emergency escrow authority.

    Record keys are additionally wrapped for this public key at upload time;
    the emergency override unwraps them with the private key held here.
    """

    def __init__(self, private_key):
        self._private_key = load_private_key(private_key)

    @classmethod
    def from_file(cls, path=EMERGENCY_ESCROW_KEY_FILE):
        with open(path, "rb") as f:
            return cls(f.read())

    @property
    def public_key(self):
        return export_public_key(self._private_key.public_key())

    def check_wrap(self, escrow_wrapped_b64):
        """Make sure an escrow wrap opens to a record key before it is catalogued"""
        try:
            symmetric_key = unwrap_b64(escrow_wrapped_b64, self._private_key)
        except UnwrapFailed as e:
            raise InvalidEscrowWrap(f"Escrow wrap cannot be opened by the escrow authority: {e.message}")
        if len(symmetric_key) != SYMMETRIC_KEY_SIZE:
            raise InvalidEscrowWrap(f"Escrow wrap holds a {len(symmetric_key)}-byte key")

    def rewrap(self, escrow_wrapped_b64, recipient_public_key):
        """Unwrap an escrowed record key and wrap it for a new recipient"""
        symmetric_key = unwrap_b64(escrow_wrapped_b64, self._private_key)
        return wrap_b64(symmetric_key, recipient_public_key)
