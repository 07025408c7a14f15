"""
Storage package - In-memory record of workflow runs.
"""

from flowstate.storage.memory import RunStorage, StoredRun

__all__ = [
    "RunStorage",
    "StoredRun",
]
