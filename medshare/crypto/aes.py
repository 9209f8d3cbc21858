from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.exceptions import InvalidTag
import os

from medshare.constants import SYMMETRIC_KEY_SIZE, GCM_NONCE_SIZE
from medshare.errors import DecryptionFailed, InvalidKey


def generate_key():
    """Generate a random AES key"""
    return os.urandom(SYMMETRIC_KEY_SIZE)  # 256-bit key


def _check_key(key):
    if not isinstance(key, (bytes, bytearray)) or len(key) != SYMMETRIC_KEY_SIZE:
        raise InvalidKey(f"Record keys must be {SYMMETRIC_KEY_SIZE} bytes")


def encrypt_with_key(data, key):
    """Encrypt data using AES-GCM with an existing key.

    Returns nonce || ciphertext || tag.
    """
    if isinstance(data, str):
        data = data.encode('utf-8')
    _check_key(key)

    # Generate a random IV
    nonce = os.urandom(GCM_NONCE_SIZE)  # 96 bits for GCM

    return nonce + AESGCM(bytes(key)).encrypt(nonce, bytes(data), None)


def encrypt(data):
    """Encrypt data under a fresh key.

    Returns:
        tuple: (ciphertext, key)
    """
    key = generate_key()
    return encrypt_with_key(data, key), key


def decrypt(encrypted_data, key):
    """Decrypt data produced by encrypt() or encrypt_with_key()"""
    _check_key(key)
    # Shortest valid input is a nonce and a tag around an empty plaintext
    if len(encrypted_data) < GCM_NONCE_SIZE + 16:
        raise DecryptionFailed("Ciphertext is truncated")

    nonce = encrypted_data[:GCM_NONCE_SIZE]
    ciphertext = encrypted_data[GCM_NONCE_SIZE:]
    try:
        return AESGCM(bytes(key)).decrypt(nonce, bytes(ciphertext), None)
    except InvalidTag:
        raise DecryptionFailed("Authentication tag mismatch: wrong key or corrupted ciphertext")
