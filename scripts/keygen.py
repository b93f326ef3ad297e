from __future__ import annotations

import argparse
import logging
from pathlib import Path

from quorumcall.logging_cfg import setup_from_env
from quorumcall.signer import generate_keypair

log = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(
        description="Generate an Ed25519 oracle keypair and print its identity."
    )
    parser.add_argument("--private-key", type=Path, required=True)
    parser.add_argument("--public-key", type=Path, required=True)
    parser.add_argument("--passphrase", default=None)
    args = parser.parse_args()

    setup_from_env()

    identity = generate_keypair(args.private_key, args.public_key, args.passphrase)
    log.info("Wrote keypair to %s / %s", args.private_key, args.public_key)
    print(identity)


if __name__ == "__main__":
    main()
