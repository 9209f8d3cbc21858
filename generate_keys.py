#!/usr/bin/env python3
"""
Script to generate the keys the platform needs outside the ledger:
the emergency escrow key pair and RSA key pairs for wallet addresses.

Usage:
    python generate_keys.py --escrow keys/emergency_escrow.pem
    python generate_keys.py --address 0xabc... --address 0xdef...
"""

import os
import argparse

from medshare.constants import EMERGENCY_ESCROW_KEY_FILE, SECURE_KEYS_DIR
from medshare.crypto.key_manager import KeyManager, export_private_key, generate_rsa_key_pair


def generate_escrow_key(path):
    """Write a new emergency escrow private key as PEM"""
    if os.path.exists(path):
        print(f"Escrow key already exists at {path}, leaving it untouched")
        return
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    private_key, _ = generate_rsa_key_pair()
    with open(path, "wb") as f:
        f.write(export_private_key(private_key))
    print(f"Emergency escrow key saved to {path}")


def main():
    parser = argparse.ArgumentParser(description="Generate MedShare key material")
    parser.add_argument("--escrow", nargs="?", const=EMERGENCY_ESCROW_KEY_FILE or "keys/emergency_escrow.pem",
                        help="Generate the emergency escrow key at this path")
    parser.add_argument("--address", action="append", default=[],
                        help="Generate an RSA key pair for a wallet address (repeatable)")
    parser.add_argument("--keys-dir", default=SECURE_KEYS_DIR)
    args = parser.parse_args()

    if args.escrow:
        generate_escrow_key(args.escrow)

    key_manager = KeyManager(args.keys_dir)
    for address in args.address:
        key_manager.generate_key_pair(address, persist=True)
        print(f"{address}: {key_manager.get_public_key_b64(address)}")

    if not args.escrow and not args.address:
        parser.print_help()


if __name__ == "__main__":
    main()
