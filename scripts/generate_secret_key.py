#!/usr/bin/env python3
"""
Generate the session signing key and the cron trigger secret.
Run this and copy the output to your .env file.
"""

import secrets

if __name__ == "__main__":
    print("=" * 60)
    print("HIV Care Portal Secret Generator")
    print("=" * 60)
    print("\nGenerating secure random values...\n")

    print(f"JWT_SECRET_KEY={secrets.token_hex(32)}")
    print(f"CRON_SECRET={secrets.token_urlsafe(32)}")
    print("\n" + "=" * 60)
    print("Copy the lines above to your .env file")
    print("=" * 60)
