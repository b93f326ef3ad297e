"""CLI entry point for an in-process oracle round.

Usage examples:
    python scripts/simulate.py --oracles 5 --dishonest 1 --min-votes 3 --threshold 60
    python scripts/simulate.py --oracles 3 --dishonest 1 --min-votes 3 --threshold 100 --audit results/audit.jsonl
"""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from quorumcall import config
from quorumcall.logging_cfg import setup_from_env
from quorumcall.simulation import run_simulation


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run oracle voting end to end in one process")
    p.add_argument("--oracles", type=int, default=5)
    p.add_argument("--dishonest", type=int, default=1)
    p.add_argument("--requests", type=int, default=1)
    p.add_argument("--min-votes", type=int, default=config.get("defaults.min_votes", 1))
    p.add_argument(
        "--threshold", type=int, default=config.get("defaults.approval_threshold", 100)
    )
    p.add_argument("--prompt", default="What is the capital of France?")
    p.add_argument("--answer", default="Paris")
    p.add_argument("--seed", type=int, default=42)
    p.add_argument("--store", type=Path, default=None, help="Persist records under this directory")
    p.add_argument("--audit", type=Path, default=None, help="Append events to this JSONL chain")
    return p.parse_args()


async def _main_async(ns: argparse.Namespace) -> dict:
    result = await run_simulation(
        oracles=ns.oracles,
        dishonest=ns.dishonest,
        requests=ns.requests,
        min_votes=ns.min_votes,
        approval_threshold=ns.threshold,
        prompt=ns.prompt,
        honest_answer=ns.answer,
        seed=ns.seed,
        store_root=ns.store,
        audit_log=ns.audit,
    )
    return result.to_dict()


def main() -> None:
    setup_from_env()
    ns = _parse_args()
    print(json.dumps(asyncio.run(_main_async(ns)), indent=2))


if __name__ == "__main__":
    main()
