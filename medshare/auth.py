"""
Authentication of wallet addresses for the HTTP API.

A client asks for a challenge, signs it with its wallet key (EIP-191
personal message) and sends the signature back. A successful verification
hands the client a bearer token; the API attributes every call carrying
that token to the address that signed the challenge. Roles are not kept
here, they are read from the identity registry.
"""

import os
import time
import hashlib
import logging
import secrets
from typing import Dict, Optional
from web3 import Web3
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature, ValidationError as KeyValidationError

from medshare.constants import CHALLENGE_EXPIRATION, SESSION_EXPIRATION

logger = logging.getLogger(__name__)

CHALLENGE_PREFIX = "Sign this message to authenticate with the MedShare record sharing platform: "

# Open sessions, keyed by bearer token
# Format: {token: {"address": address, "opened_at": timestamp}}
authenticated_sessions: Dict[str, Dict] = {}

# Outstanding challenges, one per address, consumed on first verification
# Format: {address: {"nonce": nonce, "issued_at": timestamp}}
auth_challenges: Dict[str, Dict] = {}


def _take_live(table: Dict[str, Dict], key: str, field: str, lifetime: int) -> Optional[Dict]:
    """Entry for key, or None once it is older than lifetime (stale entries are dropped)"""
    entry = table.get(key)
    if entry is None:
        return None
    if int(time.time()) - entry[field] > lifetime:
        del table[key]
        return None
    return entry


def generate_auth_challenge(wallet_address: str) -> str:
    """
    Issue a fresh challenge for a wallet address.

    A new challenge replaces any earlier one still outstanding for the same
    address. Returns the full message the wallet has to sign.
    """
    nonce = hashlib.sha256(os.urandom(32)).hexdigest()
    auth_challenges[wallet_address.lower()] = {"nonce": nonce, "issued_at": int(time.time())}
    return CHALLENGE_PREFIX + nonce


def verify_auth_signature(wallet_address: str, signature: str) -> Optional[str]:
    """
    Check a signed challenge and open a session for the signer.

    The challenge is spent by a successful verification, so a captured
    signature cannot be replayed.

    Returns:
        str: the bearer token of the new session, or None if verification failed
    """
    address = wallet_address.lower()

    challenge = _take_live(auth_challenges, address, "issued_at", CHALLENGE_EXPIRATION)
    if challenge is None:
        logger.warning(f"No live authentication challenge for {address}")
        return None

    message = encode_defunct(text=CHALLENGE_PREFIX + challenge["nonce"])
    try:
        signer = Web3().eth.account.recover_message(message, signature=signature)
    except (BadSignature, KeyValidationError, ValueError, TypeError) as e:
        logger.warning(f"Unreadable signature from {address}: {e}")
        return None

    if signer.lower() != address:
        logger.warning(f"Challenge for {address} was signed by {signer}")
        return None

    del auth_challenges[address]
    token = secrets.token_urlsafe(32)
    authenticated_sessions[token] = {"address": address, "opened_at": int(time.time())}
    logger.info(f"Session opened for {address}")
    return token


def session_address(token: Optional[str]) -> Optional[str]:
    """Address a live session token was issued to"""
    if not token:
        return None
    session = _take_live(authenticated_sessions, token, "opened_at", SESSION_EXPIRATION)
    return session["address"] if session else None


def is_authenticated(wallet_address: str, token: Optional[str]) -> bool:
    return session_address(token) == wallet_address.lower()


def logout(token: str) -> bool:
    """Close a session; False if the token held none"""
    session = authenticated_sessions.pop(token, None)
    if session is None:
        return False
    logger.info(f"Session closed for {session['address']}")
    return True
