"""Configuration, membership, vBucket assignment, checkpoint files, leader RPC and tracing for DCP consumers."""

__version__ = "0.1.0"

__all__ = [
    "concurrent_map",
    "discovery",
    "helpers",
    "loader",
    "logger",
    "membership",
    "metadata",
    "models",
    "offsets",
    "rpc",
    "tracing",
    "vbucket_discovery",
]