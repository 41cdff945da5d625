"""
Agent teams: teammates sharing one task queue and one message bus.

Each teammate runs in its own thread:

    claim task ---> working: fresh AgentLoop for the task
        ^               |
        |               v
        |           complete task, task_update -> lead
        |               |
        |           waiting: drain inbox (shutdown -> terminal,
        |                    other messages -> more turns on the same loop)
        |               |
        +--- claim ok --+-- no claim --> idle: idle -> lead, TeammateIdle hook
                                           |
                          poll inbox + queue every IDLE_POLL_INTERVAL
                          until a task is claimable, all tasks are done,
                          or IDLE_TIMEOUT passes

The coordinator owns the queue, the bus and the teammate threads. It starts
every teammate at once and waits for all of them; one teammate failing never
stops the others. It listens on the bus as "lead" and sets all_complete the
first time the queue has nothing left to do.
"""

import json
import logging
import shutil
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Optional

from teamcode import config
from teamcode.bus import LEAD, MessageBus
from teamcode.errors import TeamError
from teamcode.hooks import HookInput, collect_feedback
from teamcode.loop import AgentLoop
from teamcode.permissions import PermissionEvaluator
from teamcode.tasks import IN_PROGRESS, TaskQueue
from teamcode.tools import LEAD_ONLY_TOOLS, Tool, ToolResult, deny_all

logger = logging.getLogger(__name__)

IDLE = "idle"
WORKING = "working"
WAITING = "waiting"
SHUTDOWN = "shutdown"

TEAMMATE_MAX_TURNS = 50
MAX_FEEDBACK_ROUNDS = 3


@dataclass(frozen=True)
class TeammateConfig:
    name: str
    role: str = "general"
    model: Optional[str] = None  # None shares the lead's provider
    prompt: str = ""
    tools: tuple = ()            # empty = the whole catalog
    permission_mode: str = "dontAsk"
    max_turns: int = TEAMMATE_MAX_TURNS

    @classmethod
    def from_dict(cls, data: dict) -> "TeammateConfig":
        model = data.get("model")
        return cls(
            name=data.get("name") or "agent",
            role=data.get("role") or "general",
            model=None if model in (None, "", "inherit") else model,
            prompt=data.get("prompt") or "",
            tools=tuple(data.get("tools") or ()),
            permission_mode=data.get("permission_mode") or data.get("permissionMode") or "dontAsk",
            max_turns=int(data.get("max_turns") or TEAMMATE_MAX_TURNS),
        )


TEAMMATE_PROMPT = """You are "{name}", a teammate in an agent team.
Your role: {role}

{prompt}

Current task list:
{tasks}

Your assigned task:
- ID: {task_id}
- Title: {title}
- Description: {description}

Instructions:
- Complete the task described above
- Be thorough but focused on your specific task
- Do NOT modify files that other teammates are working on
- When done, summarize what you accomplished"""


class Teammate:
    def __init__(self, cfg: TeammateConfig, provider, catalog, bus: MessageBus, queue: TaskQueue, *,
                 cwd=None, hooks=None, ask_user=deny_all, snapshot_path: Path = None,
                 idle_timeout: float = None, poll_interval: float = None,
                 on_status_change: Callable = None, on_content: Callable = None,
                 on_task_complete: Callable = None):
        self.config = cfg
        self.name = cfg.name
        self.role = cfg.role
        self.provider = provider
        self.catalog = catalog.subset(cfg.tools) if cfg.tools else catalog
        self.bus = bus
        self.queue = queue
        self.cwd = cwd
        self.hooks = hooks
        self.ask_user = ask_user
        self.snapshot_path = snapshot_path
        self.idle_timeout = config.IDLE_TIMEOUT if idle_timeout is None else idle_timeout
        self.poll_interval = config.IDLE_POLL_INTERVAL if poll_interval is None else poll_interval
        self.on_status_change = on_status_change
        self.on_content = on_content
        self.on_task_complete = on_task_complete

        self.status = IDLE
        self.current_task = None
        self.loop = None
        self._inbox = []
        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._stop_requested = False

        bus.subscribe(self.name, self._receive)

    def _receive(self, msg):
        """Bus handler. Runs on the sender's thread, so it only queues."""
        with self._lock:
            self._inbox.append(msg)
            if msg.type == "shutdown":
                self._stop_requested = True
                loop = self.loop
            else:
                loop = None
        if loop is not None:
            loop.abort()
        self._wake.set()

    def _set_status(self, status: str):
        with self._lock:
            if self.status == SHUTDOWN or self.status == status:
                return
            self.status = status
        logger.debug("[%s] -> %s", self.name, status)
        if self.on_status_change:
            self.on_status_change(self.name, status)

    @property
    def stop_requested(self) -> bool:
        with self._lock:
            return self._stop_requested

    def _claim(self):
        if self.stop_requested:
            return None
        return self.queue.claim_next(self.name)

    def run(self, initial_task=None):
        """Teammate thread body. Never raises."""
        try:
            task = initial_task or self._claim()
            while self.status != SHUTDOWN:
                if task is not None:
                    self._work_on(task)
                    if self.status == SHUTDOWN:
                        break
                    task = self._claim()
                    continue
                if self.stop_requested:
                    self.shutdown()
                    break
                self.current_task = None
                self._go_idle()
                task = self._idle_poll()
                if task is None:
                    break
        except Exception:
            logger.error("Teammate %s crashed", self.name, exc_info=True)
            if self.current_task is not None:
                self.queue.release(self.current_task.id, self.name)
            self._go_idle()

    def _go_idle(self):
        if self.status == SHUTDOWN:
            return
        self._set_status(IDLE)
        self.bus.send_idle(self.name)
        self._fire(HookInput("TeammateIdle", teammate_name=self.name))

    def _idle_poll(self):
        """Wait for a claimable task. None on shutdown, timeout, or when
        every task is done."""
        deadline = time.monotonic() + self.idle_timeout
        while self.status != SHUTDOWN:
            self._process_messages()
            if self.status == SHUTDOWN or self.queue.is_all_complete():
                return None
            self._set_status(IDLE)
            task = self._claim()
            if task is not None:
                return task
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.info("[%s] idle timeout, no more work", self.name)
                return None
            self._wake.wait(min(self.poll_interval, remaining))
            self._wake.clear()
        return None

    def _work_on(self, task):
        self.current_task = task
        if self.stop_requested:
            self._abandon(task)
            return
        self._set_status(WORKING)
        logger.info("[%s] working on task #%s: %s", self.name, task.id, task.title)

        instructions = TEAMMATE_PROMPT.format(
            name=self.name, role=self.role, prompt=self.config.prompt,
            tasks=self.queue.summary(), task_id=task.id,
            title=task.title, description=task.description,
        )
        loop = AgentLoop(
            self.provider, self.catalog, PermissionEvaluator(self.config.permission_mode),
            model=self.config.model,
            cwd=self.cwd,
            ask_user=self.ask_user,
            hooks=self.hooks,
            custom_instructions=instructions,
            max_turns=self.config.max_turns,
            name=self.name,
            on_content=(lambda text: self.on_content(self.name, text)) if self.on_content else None,
        )
        with self._lock:
            self.loop = loop

        result = self._run_loop(f'Execute your assigned task: "{task.title}"\n\nDescription: {task.description}')
        for _ in range(MAX_FEEDBACK_ROUNDS):
            if result is None or result.aborted:
                break
            feedback = collect_feedback(self._fire(HookInput(
                "TaskCompleted", teammate_name=self.name, task_id=task.id)))
            if not feedback:
                break
            followup = self._run_loop(f"[Hook feedback]: {feedback}")
            if followup is None:
                break
            result = followup

        if result is None or result.aborted:
            self._abandon(task)
            return

        self.queue.complete(task.id, result.final_content)
        self._save_snapshot()
        self.bus.send_task_update(self.name, task.id, "completed")
        if self.on_task_complete:
            self.on_task_complete(self.name, task.id)
        logger.info("[%s] completed task #%s in %d turns", self.name, task.id, result.turns)

        self._process_messages()

    def _run_loop(self, text: str):
        """loop.run() unless a shutdown is pending. The abort flag is reset
        under the lock, so a shutdown arriving afterwards still aborts."""
        with self._lock:
            if self._stop_requested:
                return None
            loop = self.loop
            loop.cancel.clear()
        return loop.run(text, reset_abort=False)

    def _abandon(self, task):
        """Put an interrupted task back on the queue for someone else."""
        logger.info("[%s] task #%s interrupted, returning it to the queue", self.name, task.id)
        if self.queue.release(task.id, self.name):
            self._save_snapshot()
        self.current_task = None
        self._process_messages()

    def _process_messages(self):
        with self._lock:
            pending, self._inbox = self._inbox, []
            stop = self._stop_requested
        if stop or any(m.type == "shutdown" for m in pending):
            self.shutdown()
            return
        if not pending:
            return
        self._set_status(WAITING)
        for msg in pending:
            if msg.type in ("message", "broadcast") and self.loop is not None:
                result = self._run_loop(f"[Message from {msg.sender}]: {msg.content}")
                if result is None or result.aborted:
                    self.shutdown()
                    return

    def _save_snapshot(self):
        if self.snapshot_path is None:
            return
        try:
            self.queue.save(self.snapshot_path)
        except OSError as e:
            logger.warning("Could not save task snapshot: %s", e)

    def _fire(self, payload: HookInput) -> list:
        if self.hooks is None:
            return []
        try:
            return self.hooks.fire(payload)
        except Exception:
            logger.error("Hook runner failed for %s", payload.event, exc_info=True)
            return []

    def shutdown(self):
        with self._lock:
            self._stop_requested = True
            loop = self.loop
            already = self.status == SHUTDOWN
        if loop is not None:
            loop.abort()
        self._wake.set()
        if already:
            return
        logger.info("[%s] shutting down", self.name)
        self.bus.unsubscribe(self.name)
        self._set_status(SHUTDOWN)

    def summary(self) -> str:
        task = f'working on "{self.current_task.title}"' if self.current_task else "no task assigned"
        return f"[{self.name}] ({self.role}) - {self.status} - {task}"


class TeamCoordinator:
    def __init__(self, provider, catalog, *, cwd=None, hooks=None, ask_user=deny_all,
                 teams_dir: Path = None, provider_factory: Callable = None,
                 idle_timeout: float = None, poll_interval: float = None,
                 on_all_complete: Callable = None, on_status_change: Callable = None,
                 on_content: Callable = None):
        self.provider = provider
        self.catalog = catalog
        self.cwd = cwd
        self.hooks = hooks
        self.ask_user = ask_user
        self.teams_dir = teams_dir or config.TEAMS_DIR
        self.provider_factory = provider_factory
        self.idle_timeout = idle_timeout
        self.poll_interval = poll_interval
        self.on_all_complete = on_all_complete
        self.on_status_change = on_status_change
        self.on_content = on_content

        self.bus = MessageBus()
        self.queue = None
        self.team_name = None
        self.teammates = {}
        self.all_complete = threading.Event()
        self._threads = []
        self._lock = threading.Lock()
        self.bus.subscribe(LEAD, self._on_lead_message)

    @property
    def is_active(self) -> bool:
        return self.team_name is not None

    @property
    def team_dir(self) -> Path:
        return self.teams_dir / self.team_name

    def _on_lead_message(self, msg):
        if msg.type == "idle":
            logger.info("Teammate %s is idle", msg.sender)
            self._check_all_complete()
        elif msg.type == "task_update":
            logger.info("Task update from %s: %s", msg.sender, msg.content)
            self._check_all_complete()

    def _check_all_complete(self):
        queue = self.queue
        if queue is None or not queue.is_all_complete():
            return
        with self._lock:
            if self.all_complete.is_set():
                return
            self.all_complete.set()
        logger.info("All tasks completed")
        if self.on_all_complete:
            self.on_all_complete()

    def create_team(self, name: str, members: list, tasks: list):
        """members: TeammateConfig or dicts. tasks: dicts with title,
        description, optional assignee and blocked_by (blocker TITLES)."""
        if self.is_active:
            raise TeamError("A team is already active. Clean up first.")
        members = [m if isinstance(m, TeammateConfig) else TeammateConfig.from_dict(m) for m in members]
        if not members:
            raise TeamError("At least one team member is required.")

        queue = TaskQueue()
        ids = {}
        for item in tasks:
            title = item.get("title") or "Untitled task"
            blockers = []
            for blocker in item.get("blocked_by") or item.get("blockedBy") or []:
                if blocker in ids:
                    blockers.append(ids[blocker])
                else:
                    logger.warning("Task %r: unknown blocker %r ignored", title, blocker)
            task = queue.add(title, item.get("description", ""), blockers)
            ids[title] = task.id
            if item.get("assignee"):
                queue.assign(task.id, item["assignee"])

        self.team_name = name
        self.queue = queue
        self.all_complete.clear()
        self._persist(members)

        for cfg in members:
            self.teammates[cfg.name] = Teammate(
                cfg, self._provider_for(cfg), self.catalog.without(LEAD_ONLY_TOOLS), self.bus, queue,
                cwd=self.cwd, hooks=self.hooks, ask_user=self.ask_user,
                snapshot_path=self.team_dir / "tasks.json",
                idle_timeout=self.idle_timeout, poll_interval=self.poll_interval,
                on_status_change=self.on_status_change, on_content=self.on_content,
            )
        logger.info('Team "%s" created with %d teammates', name, len(members))

    def _provider_for(self, cfg: TeammateConfig):
        if cfg.model and self.provider_factory and cfg.model != getattr(self.provider, "model", None):
            return self.provider_factory(cfg.model)
        return self.provider

    def _persist(self, members: list):
        try:
            self.team_dir.mkdir(parents=True, exist_ok=True)
            (self.team_dir / "config.json").write_text(json.dumps({
                "name": self.team_name,
                "created_at": time.time(),
                "members": [asdict(m) for m in members],
            }, indent=2))
            self.queue.save(self.team_dir / "tasks.json")
        except OSError as e:
            logger.warning("Could not persist team %s: %s", self.team_name, e)

    def _launch(self) -> list:
        if self.queue is None:
            raise TeamError("No team created")
        threads = []
        for teammate in self.teammates.values():
            assigned = next((t for t in self.queue.for_assignee(teammate.name)
                             if t.status == IN_PROGRESS), None)
            thread = threading.Thread(target=teammate.run, args=(assigned,),
                                      name=f"teammate-{teammate.name}", daemon=True)
            threads.append(thread)
        for thread in threads:
            thread.start()
        self._threads = threads
        return threads

    def start(self):
        """Start every teammate and wait until all of them have stopped."""
        for thread in self._launch():
            thread.join()
        self._check_all_complete()

    def start_in_background(self):
        self._launch()

    def wait(self, timeout: float = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in self._threads:
            remaining = None if deadline is None else max(0, deadline - time.monotonic())
            thread.join(remaining)
        return not any(t.is_alive() for t in self._threads)

    def send_message(self, to: str, content: str) -> ToolResult:
        if to not in self.teammates:
            available = ", ".join(self.teammates) or "none"
            return ToolResult.fail(f'Teammate "{to}" not found. Available: {available}')
        self.bus.send(LEAD, to, content)
        return ToolResult.ok(f"Message sent to {to}")

    def broadcast(self, content: str) -> int:
        return len(self.bus.broadcast(LEAD, content))

    def shutdown_teammate(self, name: str) -> bool:
        teammate = self.teammates.get(name)
        if teammate is None:
            return False
        self.bus.send_shutdown(name)
        teammate.shutdown()
        return True

    def cleanup(self):
        for teammate in self.teammates.values():
            if teammate.status != SHUTDOWN:
                teammate.shutdown()
        self.bus.clear()
        self.bus.subscribe(LEAD, self._on_lead_message)
        if self.team_name:
            shutil.rmtree(self.team_dir, ignore_errors=True)
        self.teammates = {}
        self._threads = []
        self.queue = None
        self.team_name = None
        logger.info("Team cleaned up")

    def statuses(self) -> dict:
        return {name: tm.status for name, tm in self.teammates.items()}

    def summary(self) -> str:
        if not self.is_active:
            return "No active team."
        lines = [f"=== Team: {self.team_name} ===", "", "Teammates:"]
        lines += [f"  {tm.summary()}" for tm in self.teammates.values()]
        lines += ["", self.queue.summary()]
        return "\n".join(lines)


def make_team_tools(coordinator: TeamCoordinator) -> list:
    """TeamCreate, SendMessage and TaskList tools for the lead agent."""

    def team_create(args: dict, context) -> ToolResult:
        if coordinator.is_active:
            return ToolResult.fail("A team is already active. Use /team to see status.")
        members = args.get("members") or []
        tasks = args.get("tasks") or []
        if not members:
            return ToolResult.fail("At least one team member is required.")
        if not tasks:
            return ToolResult.fail("At least one task is required.")
        try:
            coordinator.create_team(args.get("name") or "team", members, tasks)
            coordinator.start_in_background()
        except (TeamError, ValueError) as e:
            return ToolResult.fail(f"Failed to create team: {e}")
        names = ", ".join(coordinator.teammates)
        titles = ", ".join(t.get("title", "Untitled task") for t in tasks)
        return ToolResult.ok(
            f'Team "{coordinator.team_name}" created and started!\n\nMembers: {names}\nTasks: {titles}\n\n'
            "Teammates are now working autonomously. Use TaskList to check progress.")

    def send_message(args: dict, context) -> ToolResult:
        if not coordinator.is_active:
            return ToolResult.fail("No active team.")
        to = args.get("to", "")
        content = args.get("content", "")
        if to == "all":
            return ToolResult.ok(f"Broadcast sent to {coordinator.broadcast(content)} teammates")
        return coordinator.send_message(to, content)

    def task_list(args: dict, context) -> ToolResult:
        if not coordinator.is_active:
            return ToolResult.ok("No active team.")
        return ToolResult.ok(coordinator.queue.summary())

    return [
        Tool(
            name="TeamCreate",
            description="Create and start an agent team for parallel work. Each teammate runs "
                        "autonomously with its own agent loop and claims tasks from a shared list.",
            parameters={
                "properties": {
                    "name": {"type": "string"},
                    "members": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "name": {"type": "string"},
                                "role": {"type": "string"},
                                "model": {"type": "string"},
                                "prompt": {"type": "string"},
                                "tools": {"type": "array", "items": {"type": "string"}},
                                "permission_mode": {"type": "string"},
                            },
                            "required": ["name"],
                        },
                    },
                    "tasks": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "title": {"type": "string"},
                                "description": {"type": "string"},
                                "assignee": {"type": "string"},
                                "blocked_by": {"type": "array", "items": {"type": "string"},
                                               "description": "Titles of tasks this one depends on"},
                            },
                            "required": ["title"],
                        },
                    },
                },
                "required": ["name", "members", "tasks"],
            },
            execute=team_create,
        ),
        Tool(
            name="SendMessage",
            description='Send a message to a teammate, or to every teammate with to="all".',
            parameters={
                "properties": {
                    "to": {"type": "string"},
                    "content": {"type": "string"},
                },
                "required": ["to", "content"],
            },
            execute=send_message,
        ),
        Tool(
            name="TaskList",
            description="Show the team's task list with status and owners.",
            parameters={"properties": {}},
            execute=task_list,
        ),
    ]
