#!/usr/bin/env python3

"""Print a fresh base64-encoded 256-bit key for ENCRYPTION_KEY."""

import argparse
import base64

from tgvault.domain.crypto import generate_key


def encoded_key() -> str:
    return base64.b64encode(generate_key()).decode("ascii")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Generate an ENCRYPTION_KEY value for tgvault."
    )
    parser.add_argument(
        "--env",
        action="store_true",
        help="Print as an ENCRYPTION_KEY=... line ready for a .env file.",
    )
    args = parser.parse_args(argv)

    encoded = encoded_key()
    print(f"ENCRYPTION_KEY={encoded}" if args.env else encoded)


if __name__ == "__main__":
    main()
