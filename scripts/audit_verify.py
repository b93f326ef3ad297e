from __future__ import annotations

import argparse
from pathlib import Path

from quorumcall.events import verify_chain


def main():
    ap = argparse.ArgumentParser(description="Check the hash chain of an event audit log.")
    ap.add_argument("--audit", type=Path, required=True)
    ns = ap.parse_args()
    ok = verify_chain(ns.audit)
    print("OK" if ok else "BROKEN")


if __name__ == "__main__":
    main()
