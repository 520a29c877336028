"""
State Store

Durable storage for basket snapshots and the basket execution log.
"""

import json
from datetime import datetime, timezone
from pathlib import Path


class StateStore:
    """
    Persistent state management.

    Stores:
    - Basket registry snapshots (JSON)
    - Basket execution events (JSONL, append-only)
    """

    def __init__(self, data_dir: str = "data/baskets"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def save_snapshot(self, name: str, data):
        """Save a state snapshot."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        path = self.data_dir / f"{name}_{stamp}.json"
        with open(path, "w") as f:
            json.dump(data, f, indent=2, default=str)
        return path

    def append_jsonl(self, name: str, record: dict):
        """Append a record to a JSONL log file (basket events)."""
        path = self.data_dir / f"{name}.jsonl"
        with open(path, "a") as f:
            f.write(json.dumps(record, default=str) + "\n")

    def read_jsonl(self, name: str, limit: int = 1000) -> list:
        """Read up to 'limit' records from end of a JSONL log file."""
        path = self.data_dir / f"{name}.jsonl"
        if not path.exists():
            return []
        with open(path, "r") as f:
            lines = f.readlines()
        return [json.loads(x) for x in lines[-limit:]]
