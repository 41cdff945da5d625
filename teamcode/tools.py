"""
Tool catalog and dispatcher.

    ToolCatalog     name -> Tool. Injected wherever it is needed, never global.
                    subset()/without() derive restricted catalogs for
                    subagents and teammates.
    ToolDispatcher  runs one ToolCallRequest through the pipeline:

        resolve name -> permission check -> (ask human) -> PreToolUse hook
          -> execute -> PostToolUse / PostToolUseFailure hook -> ToolResult

execute() never raises. Unknown tools, denials, human refusals and tool
exceptions all come back as ToolResult(success=False, error=...), which the
agent loop hands to the model like any other result.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from teamcode.hooks import HookInput, collect_feedback
from teamcode.permissions import PermissionEvaluator

logger = logging.getLogger(__name__)

APPROVE_ONCE = {"y", "yes"}
APPROVE_SESSION = {"a", "always"}

# Only the lead agent delegates. Subagents and teammates never see these.
LEAD_ONLY_TOOLS = ("Task", "TeamCreate", "SendMessage")


@dataclass(frozen=True)
class ToolResult:
    success: bool
    output: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(cls, output: str) -> "ToolResult":
        return cls(True, output)

    @classmethod
    def fail(cls, error: str, output: str = "") -> "ToolResult":
        return cls(False, output, error)

    def with_feedback(self, feedback: str) -> "ToolResult":
        text = f"{self.output}\n\n[Hook feedback]\n{feedback}" if self.output else f"[Hook feedback]\n{feedback}"
        return replace(self, output=text)

    def to_dict(self) -> dict:
        return {"success": self.success, "output": self.output[:2000], "error": self.error}


def deny_all(question: str) -> str:
    return "n"


@dataclass
class ToolContext:
    """What a running tool may use: where it runs, the policy it runs under,
    a way to ask the human, and the loop's cancellation token."""
    cwd: str
    permissions: PermissionEvaluator
    ask_user: Callable[[str], str] = deny_all
    cancel: threading.Event = field(default_factory=threading.Event)


@dataclass
class Tool:
    name: str
    description: str
    parameters: dict
    execute: Callable  # (args: dict, context: ToolContext) -> ToolResult

    def schema(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": {"type": "object", **self.parameters},
        }


class ToolCatalog:
    def __init__(self, tools: list = None):
        self._tools = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool):
        if tool.name in self._tools:
            logger.warning("Tool '%s' already registered, overwriting", tool.name)
        self._tools[tool.name] = tool
        logger.debug("Registered tool: %s", tool.name)

    def register_all(self, tools: list):
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list:
        return list(self._tools)

    def list(self) -> list:
        return list(self._tools.values())

    def schemas(self):
        return [t.schema() for t in self._tools.values()]

    def subset(self, names) -> "ToolCatalog":
        """Catalog restricted to `names`. Unknown names are ignored."""
        return ToolCatalog([self._tools[n] for n in names if n in self._tools])

    def without(self, names) -> "ToolCatalog":
        exclude = set(names)
        return ToolCatalog([t for n, t in self._tools.items() if n not in exclude])

    def __contains__(self, name) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


class ToolDispatcher:
    def __init__(self, catalog: ToolCatalog, context: ToolContext, hooks=None):
        self.catalog = catalog
        self.context = context
        self.hooks = hooks

    def execute(self, request) -> ToolResult:
        try:
            return self._execute(request)
        except Exception as e:
            logger.error("Dispatch of %s failed", request.name, exc_info=True)
            return ToolResult.fail(f"{type(e).__name__}: {e}")

    def execute_all(self, requests: list) -> list:
        """Sequential on purpose: two tools of one agent must never touch the
        same file at the same time."""
        results = []
        for request in requests:
            if self.context.cancel.is_set():
                break
            results.append(self.execute(request))
        return results

    def _execute(self, request) -> ToolResult:
        name = request.name
        tool = self.catalog.get(name)
        if tool is None:
            return ToolResult.fail(
                f"Unknown tool: {name}. Available tools: {', '.join(self.catalog.names()) or 'none'}")
        args = request.arguments
        if not isinstance(args, dict):
            return ToolResult.fail(f"Arguments for {name} must be an object, got {type(args).__name__}")

        permissions = self.context.permissions
        decision = permissions.check(name, args)
        if decision.denied:
            return ToolResult.fail(f'Permission denied for tool "{name}": {decision.reason}')
        if decision.needs_approval:
            answer = self._ask(f"Allow {name}? {decision.description} (y/n/always)")
            if answer in APPROVE_SESSION:
                permissions.allow_for_session(permissions.session_key(name, args))
            elif answer not in APPROVE_ONCE:
                return ToolResult.fail(f'User denied permission for tool "{name}"')

        logger.debug("Executing %s with args: %.200s", name, args)
        outcomes = self._fire(HookInput("PreToolUse", tool_name=name, tool_args=args))

        try:
            result = tool.execute(args, self.context)
            if not isinstance(result, ToolResult):
                result = ToolResult.ok("" if result is None else str(result))
        except Exception as e:
            logger.error("Tool %s raised", name, exc_info=True)
            result = ToolResult.fail(str(e) or type(e).__name__)
        logger.debug("Result of %s: success=%s, %d chars", name, result.success, len(result.output))

        event = "PostToolUse" if result.success else "PostToolUseFailure"
        outcomes += self._fire(HookInput(event, tool_name=name, tool_args=args,
                                         tool_result=result.to_dict()))
        feedback = collect_feedback(outcomes)
        return result.with_feedback(feedback) if feedback else result

    def _ask(self, question: str) -> str:
        try:
            answer = self.context.ask_user(question)
        except (EOFError, KeyboardInterrupt):
            return ""
        return (answer or "").strip().lower()

    def _fire(self, payload: HookInput) -> list:
        if self.hooks is None:
            return []
        try:
            return self.hooks.fire(payload)
        except Exception:
            logger.error("Hook runner failed for %s", payload.event, exc_info=True)
            return []
