"""
Subagents: short-lived agent loops for focused, delegated work.

A subagent gets a fresh conversation, a restricted tool catalog and its own
permission mode. Only its final text comes back to the caller, so whatever
it read along the way never lands in the parent's context.

    parent --Task(agent_type="explore", prompt)--> SubagentManager.run()
                                                      |
                                     AgentLoop(catalog.subset(tools), mode)
                                                      |
    parent <------------- SubagentResult.output -------
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from teamcode.hooks import HookInput
from teamcode.loop import AgentLoop
from teamcode.permissions import PermissionEvaluator
from teamcode.tools import LEAD_ONLY_TOOLS, Tool, ToolResult, deny_all

logger = logging.getLogger(__name__)

READ_ONLY = ["read_file", "list_dir", "glob", "grep", "load_skill"]
DEFAULT_MAX_TURNS = 20


@dataclass(frozen=True)
class AgentType:
    name: str
    description: str
    prompt: str
    tools: list = field(default_factory=lambda: list(READ_ONLY))  # ["*"] = whole catalog
    permission_mode: str = "plan"
    max_turns: int = DEFAULT_MAX_TURNS
    model: Optional[str] = None  # None inherits the parent's provider model


AGENT_TYPES = {
    "explore": AgentType(
        name="explore",
        description="Read-only agent for exploring code, finding files, searching",
        prompt="You are an exploration agent. Search and analyze, but never modify files. "
               "Return a concise summary.",
        max_turns=30,
    ),
    "code": AgentType(
        name="code",
        description="Full agent for implementing features and fixing bugs",
        prompt="You are a coding agent. Implement the requested changes efficiently.",
        tools=["*"],
        permission_mode="dontAsk",
        max_turns=40,
    ),
    "plan": AgentType(
        name="plan",
        description="Planning agent for designing implementation strategies",
        prompt="You are a planning agent. Analyze the codebase and output a numbered "
               "implementation plan. Do NOT make changes.",
    ),
}


@dataclass
class SubagentResult:
    name: str
    output: str
    turns: int
    total_tokens: int
    success: bool
    error: Optional[str] = None


class SubagentManager:
    def __init__(self, provider, catalog, cwd=None, ask_user=deny_all, hooks=None):
        self.provider = provider
        self.catalog = catalog
        self.cwd = cwd
        self.ask_user = ask_user
        self.hooks = hooks
        self._custom = {}
        self._running = {}  # run id -> (type name, loop)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def register(self, agent_type: AgentType):
        self._custom[agent_type.name] = agent_type

    def get(self, name: str) -> Optional[AgentType]:
        return self._custom.get(name) or AGENT_TYPES.get(name)

    def available(self) -> list:
        merged = dict(AGENT_TYPES)
        merged.update(self._custom)
        return list(merged.values())

    def descriptions(self) -> str:
        return "\n".join(f"- {a.name}: {a.description}" for a in self.available())

    def run(self, name_or_type, prompt: str, on_content=None, on_tool_call=None) -> SubagentResult:
        agent_type = self.get(name_or_type) if isinstance(name_or_type, str) else name_or_type
        if agent_type is None:
            names = ", ".join(a.name for a in self.available())
            return SubagentResult(str(name_or_type), "", 0, 0, False,
                                  f'Subagent "{name_or_type}" not found. Available: {names}')

        logger.info("[%s] starting subagent: %.80s", agent_type.name, prompt)
        catalog = self.catalog.without(LEAD_ONLY_TOOLS)
        if "*" not in agent_type.tools:
            catalog = catalog.subset(agent_type.tools)
        loop = AgentLoop(
            self.provider, catalog, PermissionEvaluator(agent_type.permission_mode),
            model=agent_type.model,
            cwd=self.cwd,
            ask_user=self.ask_user,
            hooks=self.hooks,
            custom_instructions=agent_type.prompt,
            max_turns=agent_type.max_turns,
            name=agent_type.name,
            on_content=on_content,
            on_tool_call=on_tool_call,
        )
        with self._lock:
            run_id = next(self._ids)
            self._running[run_id] = (agent_type.name, loop)
        self._fire("SubagentStart")
        try:
            result = loop.run(prompt)
        except Exception as e:
            logger.error("Subagent %s failed", agent_type.name, exc_info=True)
            return SubagentResult(agent_type.name, "", 0, 0, False, str(e))
        finally:
            with self._lock:
                self._running.pop(run_id, None)
            self._fire("SubagentStop")

        logger.info("[%s] completed in %d turns", agent_type.name, result.turns)
        return SubagentResult(agent_type.name, result.final_content, result.turns,
                              result.total_tokens, not result.aborted)

    def abort(self, name: str) -> bool:
        """Abort every running subagent of this type."""
        with self._lock:
            loops = [loop for n, loop in self._running.values() if n == name]
        for loop in loops:
            loop.abort()
        return bool(loops)

    def abort_all(self):
        with self._lock:
            loops = [loop for _, loop in self._running.values()]
        for loop in loops:
            loop.abort()

    def is_running(self, name: str) -> bool:
        with self._lock:
            return any(n == name for n, _ in self._running.values())

    def _fire(self, event: str):
        if self.hooks is None:
            return
        try:
            self.hooks.fire(HookInput(event))
        except Exception:
            logger.error("Hook runner failed for %s", event, exc_info=True)


def make_task_tool(manager: SubagentManager) -> Tool:
    """The Task tool: lets an agent delegate a focused job to a subagent."""

    def run_task(args: dict, context) -> ToolResult:
        agent_type = args.get("agent_type", "explore")
        prompt = args.get("prompt") or args.get("description")
        if not prompt:
            return ToolResult.fail("Task requires a prompt")
        result = manager.run(agent_type, prompt)
        if result.error:
            return ToolResult.fail(result.error)
        return ToolResult.ok(result.output or "(subagent produced no output)")

    return Tool(
        name="Task",
        description=f"Spawn a subagent for a focused subtask. It runs in an isolated context "
                    f"and returns a summary.\n\nAgent types:\n{manager.descriptions()}",
        parameters={
            "properties": {
                "description": {"type": "string", "description": "Short task name (3-5 words)"},
                "prompt": {"type": "string", "description": "Detailed instructions"},
                "agent_type": {"type": "string", "enum": [a.name for a in manager.available()]},
            },
            "required": ["description", "prompt", "agent_type"],
        },
        execute=run_task,
    )
