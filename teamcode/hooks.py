"""
Lifecycle hooks.

Users attach shell commands to lifecycle events in settings:

    {"hooks": [{"event": "PostToolUse", "matcher": "write_*",
                "command": "ruff check --fix ."}]}

Each matching command receives the event payload as JSON on stdin (and in
TEAMCODE_HOOK_INPUT). Its exit status decides what happens next:

    0  pass      nothing to do
    1  error     logged, the agent carries on
    2  feedback  stdout is surfaced back into the conversation

Hooks are advisory: fire() never raises and never blocks the caller beyond
each hook's timeout.
"""

import json
import logging
import os
import subprocess
import time
from dataclasses import asdict, dataclass, field

from teamcode.permissions import compile_wildcard

logger = logging.getLogger(__name__)

EVENTS = {
    "SessionStart", "SessionEnd", "UserPromptSubmit",
    "PreToolUse", "PostToolUse", "PostToolUseFailure",
    "PreCompact", "Stop", "SubagentStart", "SubagentStop",
    "TeammateIdle", "TaskCompleted",
}

HOOK_EXIT_PASS = 0
HOOK_EXIT_ERROR = 1
HOOK_EXIT_FEEDBACK = 2

DEFAULT_TIMEOUT = 10  # seconds


@dataclass
class HookConfig:
    event: str
    command: str
    matcher: str = None  # wildcard over tool names
    timeout: float = DEFAULT_TIMEOUT

    def matches(self, event: str, tool_name: str = None) -> bool:
        if self.event != event:
            return False
        if self.matcher and tool_name:
            return compile_wildcard(self.matcher).fullmatch(tool_name) is not None
        return True


@dataclass
class HookInput:
    event: str
    tool_name: str = None
    tool_args: dict = None
    tool_result: dict = None
    teammate_name: str = None
    task_id: str = None
    timestamp: float = field(default_factory=time.time)

    def to_json(self) -> str:
        return json.dumps({k: v for k, v in asdict(self).items() if v is not None}, default=str)


@dataclass
class HookOutcome:
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def feedback(self) -> str:
        return self.stdout if self.exit_code == HOOK_EXIT_FEEDBACK else ""


def collect_feedback(outcomes: list) -> str:
    return "\n".join(o.feedback for o in outcomes if o.feedback)


class HookRunner:
    """Runs configured hook commands for lifecycle events."""

    def __init__(self, hooks: list = None, cwd=None):
        self.hooks = []
        self.cwd = cwd
        for hook in hooks or []:
            self.register(hook)

    @classmethod
    def from_settings(cls, settings: dict, cwd=None) -> "HookRunner":
        runner = cls(cwd=cwd)
        for raw in settings.get("hooks", []):
            try:
                runner.register(HookConfig(**raw))
            except (TypeError, ValueError) as e:
                logger.warning("Skipping invalid hook %r: %s", raw, e)
        return runner

    def register(self, hook: HookConfig):
        if hook.event not in EVENTS:
            raise ValueError(f"Unknown hook event '{hook.event}'")
        self.hooks.append(hook)
        logger.debug("Hook registered: %s -> %s", hook.event, hook.command)

    def hooks_for(self, event: str, tool_name: str = None) -> list:
        return [h for h in self.hooks if h.matches(event, tool_name)]

    def fire(self, payload: HookInput) -> list:
        outcomes = []
        for hook in self.hooks_for(payload.event, payload.tool_name):
            outcome = self._run(hook, payload)
            if outcome.exit_code not in (HOOK_EXIT_PASS, HOOK_EXIT_FEEDBACK):
                logger.warning("Hook for %s failed: %s", payload.event, outcome.stderr[:200])
            elif outcome.exit_code == HOOK_EXIT_FEEDBACK:
                logger.info("Hook feedback for %s: %s", payload.event, outcome.stdout[:100])
            outcomes.append(outcome)
        return outcomes

    def _run(self, hook: HookConfig, payload: HookInput) -> HookOutcome:
        data = payload.to_json()
        env = dict(os.environ, TEAMCODE_HOOK_EVENT=payload.event, TEAMCODE_HOOK_INPUT=data)
        try:
            r = subprocess.run(hook.command, shell=True, cwd=self.cwd, input=data,
                               capture_output=True, text=True, timeout=hook.timeout, env=env)
        except subprocess.TimeoutExpired:
            return HookOutcome(HOOK_EXIT_ERROR, stderr=f"Hook timed out after {hook.timeout}s")
        except OSError as e:
            return HookOutcome(HOOK_EXIT_ERROR, stderr=str(e))
        return HookOutcome(r.returncode, r.stdout.strip(), r.stderr.strip())
