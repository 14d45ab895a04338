"""File-backed checkpoints for workflow runs.

Stores one JSON document per executed node for crash recovery and audit
trails. Each checkpoint captures the full state after the node's update was
applied, plus the node that runs next, so a run can be resumed with
``execute(checkpoint["state"], resume_from=checkpoint["next_node"])``.

Layout: ``<directory>/<thread_id>/<seq>-<checkpoint_id>.json``
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
import uuid
from typing import Any

from mobile_workflow import config
from mobile_workflow.state import merge_state, state_from_dict, state_to_dict

logger = logging.getLogger(__name__)

_THREAD_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class CheckpointManager:
    """Manages workflow checkpoints as JSON files.

    Provides methods to save, load, and list checkpoints for thread-based
    workflow executions.
    """

    def __init__(self, directory: str = config.CHECKPOINT_DIR):
        self.directory = directory

    def _thread_dir(self, thread_id: str) -> str:
        if not _THREAD_ID.match(thread_id):
            raise ValueError(f"Invalid thread id: {thread_id!r}")
        return os.path.join(self.directory, thread_id)

    def _files(self, thread_id: str) -> list[str]:
        path = self._thread_dir(thread_id)
        try:
            names = sorted(n for n in os.listdir(path) if n.endswith(".json"))
        except FileNotFoundError:
            return []
        return [os.path.join(path, n) for n in names]

    def save(
        self,
        thread_id: str,
        node_name: str,
        state: dict[str, Any],
        next_node: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Save a checkpoint. Returns the checkpoint_id."""
        checkpoint_id = f"cp_{uuid.uuid4().hex[:12]}"
        existing = self._files(thread_id)
        parent_id = _checkpoint_id_from_path(existing[-1]) if existing else None

        record = {
            "checkpoint_id": checkpoint_id,
            "parent_id": parent_id,
            "thread_id": thread_id,
            "node_name": node_name,
            "next_node": next_node,
            "created_at": time.time(),
            "metadata": metadata or {},
            "state": state_to_dict(state),
        }
        directory = self._thread_dir(thread_id)
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, f"{len(existing):05d}-{checkpoint_id}.json")
        tmp = f"{path}.tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(record, fh, default=str)
        os.replace(tmp, path)

        logger.debug("Checkpoint saved: thread=%s cp=%s node=%s", thread_id, checkpoint_id, node_name)
        return checkpoint_id

    def load_latest(self, thread_id: str) -> dict[str, Any] | None:
        """Load the most recent checkpoint for a thread."""
        files = self._files(thread_id)
        if not files:
            return None
        return _read(files[-1])

    def load_all(self, thread_id: str) -> list[dict[str, Any]]:
        """Load all checkpoints for a thread (full execution history)."""
        return [_read(path) for path in self._files(thread_id)]

    def recorder(self, thread_id: str):
        """An ``on_step`` observer that checkpoints after every node."""

        def on_step(node_name: str, state_before: dict, update: dict, next_node: str) -> None:
            self.save(thread_id, node_name, merge_state(state_before, update), next_node=next_node)

        return on_step

    @staticmethod
    def generate_thread_id() -> str:
        """Generate a new unique thread ID for workflow execution."""
        return f"thread_{uuid.uuid4().hex[:16]}"


def _checkpoint_id_from_path(path: str) -> str:
    return os.path.basename(path).split("-", 1)[1][: -len(".json")]


def _read(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as fh:
        record = json.load(fh)
    record["state"] = state_from_dict(record.get("state") or {})
    return record
