"""
Constants for the consent-gated record sharing platform.

This module defines the configuration used throughout the application:
permission and emergency windows, key sizes, storage locations and the
address of the registry authority. Every value can be overridden from the
environment or a .env file.
"""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Permission request expiry window (days)
PERMISSION_WINDOW_DAYS = int(os.getenv("PERMISSION_WINDOW_DAYS", "30"))

# Lifetime of an access grant created by an owner approval (days)
ACCESS_WINDOW_DAYS = int(os.getenv("ACCESS_WINDOW_DAYS", "30"))

# Lifetime of an emergency grant (hours)
EMERGENCY_WINDOW_HOURS = int(os.getenv("EMERGENCY_WINDOW_HOURS", "24"))

PERMISSION_WINDOW_SECONDS = PERMISSION_WINDOW_DAYS * 24 * 3600
ACCESS_WINDOW_SECONDS = ACCESS_WINDOW_DAYS * 24 * 3600
EMERGENCY_WINDOW_SECONDS = EMERGENCY_WINDOW_HOURS * 3600

# RSA modulus size for key wrapping
RSA_KEY_SIZE = int(os.getenv("RSA_KEY_SIZE", "2048"))
MIN_RSA_KEY_SIZE = 2048

# AES-256 record keys
SYMMETRIC_KEY_SIZE = 32
GCM_NONCE_SIZE = 12

# Registry authority (verifies users, designates emergency providers)
REGISTRY_AUTHORITY_ADDRESS = os.getenv("REGISTRY_AUTHORITY_ADDRESS", "0x70997970C51812dc3A010C7d01b50e0d17dc79C8")

# IPFS URL
IPFS_API_URL = os.getenv("IPFS_API_URL", "http://localhost:5001/api/v0")
IPFS_TIMEOUT = float(os.getenv("IPFS_TIMEOUT", "30"))

# Local storage
LOCAL_STORAGE_DIR = os.getenv("LOCAL_STORAGE_DIR", "local_storage")
SECURE_KEYS_DIR = os.getenv("SECURE_KEYS_DIR", "secure_keys")

# Ledger persistence; in-memory when unset
LEDGER_STATE_FILE = os.getenv("LEDGER_STATE_FILE")

# PEM private key of the emergency escrow authority
EMERGENCY_ESCROW_KEY_FILE = os.getenv("EMERGENCY_ESCROW_KEY_FILE")

# Session expiration time (in seconds)
SESSION_EXPIRATION = int(os.getenv("SESSION_EXPIRATION", "3600"))
CHALLENGE_EXPIRATION = int(os.getenv("CHALLENGE_EXPIRATION", "300"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
