"""
Shared test fixtures: a scripted provider, a recording hook runner and a
tiny runner so each test file can also be executed directly.

No test talks to a real model. ScriptedProvider replays canned responses in
order and records every request it receives.
"""
import itertools
import os
import sys
import tempfile
import threading
import traceback

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from teamcode.hooks import HookOutcome
from teamcode.permissions import PermissionEvaluator
from teamcode.provider import Provider, ProviderResponse, StreamChunk, ToolCallRequest, Usage
from teamcode.tools import Tool, ToolCatalog, ToolContext, ToolResult

_ids = itertools.count(1)


def text(content: str) -> ProviderResponse:
    return ProviderResponse(content=content, usage=Usage(10, 5))


def call(name: str, arguments: dict = None, content: str = None) -> ProviderResponse:
    tc = ToolCallRequest(id=f"call_{next(_ids)}", name=name, arguments=arguments or {})
    return ProviderResponse(content=content, tool_calls=[tc], finish_reason="tool_calls",
                            usage=Usage(10, 5))


class ScriptedProvider(Provider):
    """Replays `script` one response per chat() call.

    An entry may be a ProviderResponse, an Exception (raised), or a callable
    taking the messages. When the script runs out, `default` is returned.
    Safe to share between teammate threads.
    """
    name = "scripted"

    def __init__(self, script=None, default=None, model: str = "test-model"):
        super().__init__(model)
        self.script = list(script or [])
        self.default = default or text("Done.")
        self.requests = []
        self._lock = threading.Lock()

    def chat(self, messages, tools=None, **options):
        with self._lock:
            self.requests.append({"messages": list(messages), "tools": tools})
            step = self.script.pop(0) if self.script else self.default
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(messages)
        return step

    def chat_stream(self, messages, tools=None, **options):
        response = self.chat(messages, tools, **options)
        if response.content:
            yield StreamChunk("content", content=response.content)
        for tc in response.tool_calls:
            yield StreamChunk("tool_call", tool_call=tc)
        yield StreamChunk("done", finish_reason=response.finish_reason)

    def list_models(self):
        return [self.model]


class AlwaysToolProvider(ScriptedProvider):
    """Requests the same tool on every turn and never finishes on its own."""

    def __init__(self, tool_name: str = "echo", model: str = "test-model"):
        super().__init__(model=model)
        self.tool_name = tool_name

    def chat(self, messages, tools=None, **options):
        with self._lock:
            self.requests.append({"messages": list(messages), "tools": tools})
        return call(self.tool_name, {"text": "again"}, content="Working...")


class RecordingHooks:
    """Stands in for HookRunner: records every payload, answers from a table
    of event -> HookOutcome list (or a callable producing one)."""

    def __init__(self, outcomes: dict = None):
        self.outcomes = outcomes or {}
        self.fired = []
        self._lock = threading.Lock()

    def fire(self, payload):
        with self._lock:
            self.fired.append(payload)
        answer = self.outcomes.get(payload.event, [])
        if callable(answer):
            answer = answer(payload)
        return list(answer)

    def events(self) -> list:
        with self._lock:
            return [p.event for p in self.fired]


def feedback(text: str) -> HookOutcome:
    return HookOutcome(2, stdout=text)


def echo_tool(name: str = "echo") -> Tool:
    return Tool(name, "Echo the text argument.",
                {"properties": {"text": {"type": "string"}}, "required": ["text"]},
                lambda args, ctx: ToolResult.ok(args.get("text", "")))


def failing_tool(name: str = "boom") -> Tool:
    def run(args, ctx):
        raise RuntimeError("kaboom")
    return Tool(name, "Always raises.", {"properties": {}}, run)


def make_catalog(*tools) -> ToolCatalog:
    return ToolCatalog(list(tools) or [echo_tool()])


def make_context(mode: str = "default", ask_user=None, cwd=None) -> ToolContext:
    ctx = ToolContext(cwd or tempfile.mkdtemp(), PermissionEvaluator(mode))
    if ask_user is not None:
        ctx.ask_user = ask_user
    return ctx


def run_tests(tests: list) -> bool:
    """Run test functions in order, report, return True if all passed."""
    failed = []
    for test in tests:
        try:
            test()
        except Exception:
            traceback.print_exc()
            print(f"FAIL: {test.__name__}")
            failed.append(test.__name__)
    print()
    print(f"{len(tests) - len(failed)}/{len(tests)} passed")
    if failed:
        print("Failed: " + ", ".join(failed))
    return not failed
