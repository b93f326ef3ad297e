"""
quorumcall – oracle-voted LLM requests with verified callbacks.
"""

from importlib import metadata as _metadata

__all__ = [
    "codec",
    "config",
    "consumer",
    "dispatch",
    "errors",
    "events",
    "lifecycle",
    "oracle",
    "records",
    "signer",
    "simulation",
    "store",
    "tally",
    "voting",
]

try:
    __version__: str = _metadata.version(__name__)
except _metadata.PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
