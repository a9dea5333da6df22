#!/usr/bin/env python3
"""Generate the RSA key pairs the token service signs with.

Prints a ``.env`` block with base64-encoded PEM keys for the access, refresh
and session pairs. Reauth tokens reuse the access pair.

Usage:
    python scripts/generate_keys.py >> .env
    python scripts/generate_keys.py --pair access
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

PAIRS = ("access", "refresh", "session")


def render_env(pairs: tuple[str, ...]) -> str:
    from todoauth.service.signer import KeyPair

    lines = []
    for name in pairs:
        private_b64, public_b64 = KeyPair.generate(name).encoded()
        lines.append(f"{name.upper()}_TOKEN_PRIVATE_KEY={private_b64}")
        lines.append(f"{name.upper()}_TOKEN_PUBLIC_KEY={public_b64}")
    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(
        description="Generate token signing key pairs in .env format",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--pair",
        choices=PAIRS,
        action="append",
        help="Only generate the named pair (repeatable); defaults to all three",
    )
    args = parser.parse_args()
    print(render_env(tuple(args.pair) if args.pair else PAIRS))


if __name__ == "__main__":
    main()
