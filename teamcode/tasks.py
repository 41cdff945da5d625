"""
Shared task queue with dependency tracking.

    add(title, blocked_by=[a])  -> status "blocked" (or "pending" with no deps)
    claim_next(who)             -> first pending task, now "in_progress"
    complete(id, result)        -> "completed", then every blocked task whose
                                   blockers are all completed becomes "pending"

Legal transitions only:

    blocked --(blockers done)--> pending --(claim/assign)--> in_progress
                                                       --(complete)--> completed
    in_progress --(release)--> pending   work abandoned, e.g. owner shut down

Teammates call into the queue from their own threads, so every read-modify-
write happens under one lock. claim_next() is a single scan-and-assign: two
callers can never walk away with the same task.
"""

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

from teamcode.errors import TaskQueueError

logger = logging.getLogger(__name__)

PENDING = "pending"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
BLOCKED = "blocked"

STATUS_ICONS = {PENDING: "[ ]", IN_PROGRESS: "[>]", COMPLETED: "[x]", BLOCKED: "[!]"}


@dataclass
class TaskItem:
    id: str
    title: str
    description: str = ""
    status: str = PENDING
    assignee: Optional[str] = None
    blocked_by: list = field(default_factory=list)
    result: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def touch(self):
        self.updated_at = time.time()


class TaskQueue:
    def __init__(self):
        self._tasks = []
        self._index = {}
        self._counter = 1
        self._lock = threading.Lock()

    def add(self, title: str, description: str = "", blocked_by=None) -> TaskItem:
        with self._lock:
            deps = list(dict.fromkeys(blocked_by or []))
            unknown = [d for d in deps if d not in self._index]
            if unknown:
                raise TaskQueueError(f"Unknown blocker task id(s): {', '.join(unknown)}")
            task = TaskItem(id=str(self._counter), title=title, description=description,
                            status=BLOCKED if deps else PENDING, blocked_by=deps)
            self._counter += 1
            self._tasks.append(task)
            self._index[task.id] = task
            # blockers may already be done
            self._promote(task)
            logger.debug("Task added: #%s %s (%s)", task.id, title, task.status)
            return task

    def assign(self, task_id: str, assignee: str) -> bool:
        with self._lock:
            task = self._index.get(task_id)
            if task is None or task.status != PENDING:
                return False
            self._start(task, assignee)
            return True

    def claim_next(self, assignee: str) -> Optional[TaskItem]:
        with self._lock:
            for task in self._tasks:
                if task.status == PENDING and self._unblocked(task):
                    self._start(task, assignee)
                    logger.debug("Task #%s claimed by %s", task.id, assignee)
                    return task
            return None

    def complete(self, task_id: str, result: str = None) -> bool:
        with self._lock:
            task = self._index.get(task_id)
            if task is None or task.status != IN_PROGRESS:
                return False
            task.status = COMPLETED
            task.result = result
            task.touch()
            for other in self._tasks:
                self._promote(other)
            logger.info("Task #%s completed: %s", task.id, task.title)
            return True

    def release(self, task_id: str, assignee: str = None) -> bool:
        """Hand an unfinished task back: in_progress -> pending, unassigned.
        With `assignee`, only that owner may release it."""
        with self._lock:
            task = self._index.get(task_id)
            if task is None or task.status != IN_PROGRESS:
                return False
            if assignee is not None and task.assignee != assignee:
                return False
            task.assignee = None
            task.status = PENDING
            task.touch()
            logger.info("Task #%s released back to the queue", task.id)
            return True

    def _start(self, task: TaskItem, assignee: str):
        task.assignee = assignee
        task.status = IN_PROGRESS
        task.touch()

    def _unblocked(self, task: TaskItem) -> bool:
        return all(self._index[d].status == COMPLETED for d in task.blocked_by)

    def _promote(self, task: TaskItem):
        if task.status == BLOCKED and self._unblocked(task):
            task.status = PENDING
            task.touch()

    def get(self, task_id: str) -> Optional[TaskItem]:
        with self._lock:
            return self._index.get(task_id)

    def all(self) -> list:
        with self._lock:
            return list(self._tasks)

    def _with_status(self, status: str) -> list:
        with self._lock:
            return [t for t in self._tasks if t.status == status]

    def pending(self) -> list:
        return self._with_status(PENDING)

    def in_progress(self) -> list:
        return self._with_status(IN_PROGRESS)

    def completed(self) -> list:
        return self._with_status(COMPLETED)

    def blocked(self) -> list:
        return self._with_status(BLOCKED)

    def for_assignee(self, assignee: str) -> list:
        with self._lock:
            return [t for t in self._tasks if t.assignee == assignee]

    def is_all_complete(self) -> bool:
        with self._lock:
            return all(t.status == COMPLETED for t in self._tasks)

    def has_pending_work(self) -> bool:
        with self._lock:
            return any(t.status in (PENDING, IN_PROGRESS) for t in self._tasks)

    def __len__(self):
        with self._lock:
            return len(self._tasks)

    def summary(self) -> str:
        with self._lock:
            tasks = list(self._tasks)
        if not tasks:
            return "No tasks."
        done = sum(1 for t in tasks if t.status == COMPLETED)
        lines = [f"Tasks: {done}/{len(tasks)} completed"]
        for t in tasks:
            blocked = f" (blocked by: {', '.join(t.blocked_by)})" if t.status == BLOCKED else ""
            owner = f" @{t.assignee}" if t.assignee else ""
            lines.append(f"  #{t.id}. {STATUS_ICONS[t.status]} {t.title}{blocked}{owner}")
        return "\n".join(lines)

    def to_list(self) -> list:
        with self._lock:
            return [asdict(t) for t in self._tasks]

    def save(self, path: Path):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_list(), indent=2))

    @classmethod
    def load(cls, path: Path) -> "TaskQueue":
        queue = cls()
        if not path.exists():
            return queue
        try:
            records = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read task snapshot %s: %s", path, e)
            return queue
        for data in records:
            try:
                task = TaskItem(**data)
            except TypeError:
                logger.warning("Skipping malformed task record: %r", data)
                continue
            queue._tasks.append(task)
            queue._index[task.id] = task
        ids = [int(t.id) for t in queue._tasks if t.id.isdigit()]
        queue._counter = max(ids) + 1 if ids else 1
        return queue
