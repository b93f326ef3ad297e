from __future__ import annotations

"""Central configuration loader for quorumcall (YAML-based).

Search order:
1) config/quorumcall.override.yml at repository root
2) config/quorumcall.yml at repository root
3) Fallback defaults embedded below

Access helpers:
- load() -> dict
- get("limits.max_oracles", default)

CLI:
  python -m quorumcall.config                     # print full JSON config
  python -m quorumcall.config limits              # print a section
  python -m quorumcall.config limits.max_oracles  # print a single value
"""

import json
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml


_DEFAULTS: Dict[str, Any] = {
    # Fixed at allocation time; the record store reserves space from these
    "limits": {
        "max_id_bytes": 64,
        "max_provider_len": 64,
        "max_model_id_len": 64,
        "max_messages": 50,
        "max_callback_targets": 32,
        "max_oracles": 32,
    },
    "defaults": {"min_votes": 1, "approval_threshold": 100},
    "store": {"root": None},
    "events": {"audit_log": None},
    # Off-chain oracle node behaviour
    "oracle": {"max_fulfillers": 4, "fulfiller_fraction": 0.2},
    "consumer": {"provider": "openai", "model_id": "gpt-4"},
}

_CONFIG_DIR = Path("config")


def _merge(data: Dict[str, Any]) -> Dict[str, Any]:
    # shallow merge defaults -> data (data wins), one level deep for sections
    out = {k: dict(v) if isinstance(v, dict) else v for k, v in _DEFAULTS.items()}
    for k, v in data.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            nv = dict(out[k])
            nv.update(v)
            out[k] = nv
        else:
            out[k] = v
    return out


@lru_cache(maxsize=1)
def load() -> Dict[str, Any]:
    override = _CONFIG_DIR / "quorumcall.override.yml"
    path = override if override.exists() else _CONFIG_DIR / "quorumcall.yml"
    if not path.exists():
        return _merge({})
    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return _merge(data)


def get(path: str, default: Any | None = None) -> Any:
    """Get a config value by dot-path, with optional array indexing.

    Examples:
        get("limits.max_oracles")     -> 32
        get("oracle.max_fulfillers")  -> 4
    """
    cur: Any = load()
    for p in path.split("."):
        match = re.match(r"^(\w+)\[(\d+)\]$", p)
        if match:
            key, idx = match.group(1), int(match.group(2))
            if not isinstance(cur, dict) or key not in cur:
                return default
            cur = cur[key]
            if not isinstance(cur, list) or idx >= len(cur):
                return default
            cur = cur[idx]
        else:
            if not isinstance(cur, dict) or p not in cur:
                return default
            cur = cur[p]
    return cur


def _main() -> None:
    import sys

    if len(sys.argv) == 1:
        print(json.dumps(load(), indent=2))
        return
    if sys.argv[1] == "use":
        # Switch active config by writing config/quorumcall.override.yml
        if len(sys.argv) < 3:
            print("Usage: python -m quorumcall.config use <path-to-yml>")
            return
        p = Path(sys.argv[2])
        if not p.exists():
            print("Config file not found:", p)
            return
        dst = _CONFIG_DIR / "quorumcall.override.yml"
        dst.parent.mkdir(parents=True, exist_ok=True)
        dst.write_text(p.read_text())
        load.cache_clear()
        print("Switched config to", p)
        return
    val = get(sys.argv[1])
    if isinstance(val, (dict, list)):
        print(json.dumps(val))
    elif val is None:
        print("")
    else:
        print(val)


if __name__ == "__main__":
    _main()
