"""
Checkpoint Store

File-backed durable store for checkpoints and interruption records.

Layout:
    <root>/<task_id>/checkpoint-000001.json   one file per checkpoint
    <root>/interruptions.jsonl                append-only interruption log

CONSTRAINTS:
- A checkpoint file is written once (temp file + atomic rename) and never
  overwritten in place
- Interruption updates are appended as newer records; the latest record for
  a task wins on read
- Interruption appends are fsync'd for durability
- A task only ever reads and writes its own checkpoint directory
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Optional, Dict, List, Any

from .checkpoint_model import Checkpoint, Interruption
from .errors import CheckpointError

logger = logging.getLogger("checkpoint_store")

_CHECKPOINT_FILE = re.compile(r"^checkpoint-(\d+)\.json$")
_SAFE_TASK_ID = re.compile(r"^[A-Za-z0-9_.:\-]+$")


class CheckpointStore:
    """
    Durable checkpoint persistence.

    Args:
        root: Directory holding checkpoint data (per-test tmp dirs in tests)
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.interruptions_file = self.root / "interruptions.jsonl"

    # -------------------------------------------------------------------------
    # Checkpoints
    # -------------------------------------------------------------------------

    def append(self, checkpoint: Checkpoint) -> Path:
        """
        Write a new checkpoint file.

        Raises:
            CheckpointError: if a checkpoint with that sequence already exists
        """
        task_dir = self._task_dir(checkpoint.task_id)
        task_dir.mkdir(parents=True, exist_ok=True)
        path = task_dir / f"checkpoint-{checkpoint.sequence:06d}.json"
        if path.exists():
            raise CheckpointError(checkpoint.task_id, f"sequence {checkpoint.sequence} already written")

        tmp = path.with_suffix(".tmp")
        with open(tmp, 'w') as f:
            json.dump(checkpoint.to_dict(), f)
            f.flush()
            os.fsync(f.fileno())
        tmp.replace(path)
        return path

    def latest(self, task_id: str) -> Optional[Checkpoint]:
        """Newest readable checkpoint for a task."""
        for path in reversed(self._checkpoint_files(task_id)):
            checkpoint = self._load(path)
            if checkpoint is not None:
                return checkpoint
        return None

    def last_sequence(self, task_id: str) -> int:
        """Highest sequence number on disk, readable or not (0 if none)."""
        numbers = [int(_CHECKPOINT_FILE.match(p.name).group(1)) for p in self._checkpoint_files(task_id)]
        return max(numbers, default=0)

    def list_checkpoints(self, task_id: str) -> List[Checkpoint]:
        """All readable checkpoints for a task, oldest first."""
        checkpoints = []
        for path in self._checkpoint_files(task_id):
            checkpoint = self._load(path)
            if checkpoint is not None:
                checkpoints.append(checkpoint)
        return checkpoints

    def prune(self, task_id: str, keep: int) -> int:
        """
        Delete all but the newest `keep` checkpoints.

        Returns:
            Number of files deleted
        """
        files = self._checkpoint_files(task_id)
        stale = files[:-keep] if keep > 0 else files
        for path in stale:
            path.unlink(missing_ok=True)
        if stale:
            logger.debug(f"Pruned {len(stale)} checkpoint(s) for {task_id}")
        return len(stale)

    def delete_all(self, task_id: str) -> int:
        deleted = self.prune(task_id, keep=0)
        task_dir = self._task_dir(task_id)
        if task_dir.exists() and not any(task_dir.iterdir()):
            task_dir.rmdir()
        return deleted

    def task_ids(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())

    # -------------------------------------------------------------------------
    # Interruptions
    # -------------------------------------------------------------------------

    def append_interruption(self, interruption: Interruption) -> None:
        self._append_record(self.interruptions_file, interruption.to_dict())

    def latest_interruptions(self) -> Dict[str, Interruption]:
        """Latest interruption record per task."""
        latest: Dict[str, Interruption] = {}
        for record in self._read_records(self.interruptions_file):
            try:
                interruption = Interruption.from_dict(record)
            except (KeyError, ValueError):
                continue
            latest[interruption.task_id] = interruption
        return latest

    def get_interruption(self, task_id: str) -> Optional[Interruption]:
        return self.latest_interruptions().get(task_id)

    def list_resumable(self) -> List[Interruption]:
        """Resumable interruptions with no resume attempt yet, oldest first."""
        return sorted(
            (i for i in self.latest_interruptions().values() if i.is_resumable and not i.resume_attempted),
            key=lambda i: i.interrupted_at,
        )

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    def _task_dir(self, task_id: str) -> Path:
        if not _SAFE_TASK_ID.match(task_id):
            raise CheckpointError(task_id, "task id is not safe to use as a directory name")
        return self.root / task_id

    def _checkpoint_files(self, task_id: str) -> List[Path]:
        task_dir = self._task_dir(task_id)
        if not task_dir.exists():
            return []
        numbered = []
        for path in task_dir.iterdir():
            match = _CHECKPOINT_FILE.match(path.name)
            if match:
                numbered.append((int(match.group(1)), path))
        return [path for _, path in sorted(numbered)]

    def _load(self, path: Path) -> Optional[Checkpoint]:
        try:
            with open(path, 'r') as f:
                return Checkpoint.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Skipping unreadable checkpoint {path}: {e}")
            return None

    def _append_record(self, file_path: Path, record: Dict[str, Any]) -> None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, 'a') as f:
            f.write(json.dumps(record) + '\n')
            f.flush()
            os.fsync(f.fileno())

    def _read_records(self, file_path: Path) -> List[Dict[str, Any]]:
        if not file_path.exists():
            return []
        records = []
        with open(file_path, 'r') as f:
            for line in f:
                line = line.strip()
                if line:
                    try:
                        records.append(json.loads(line))
                    except json.JSONDecodeError:
                        # Skip malformed lines
                        continue
        return records
