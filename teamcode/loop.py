"""
The agent loop.

    while turns < max_turns and not cancelled:
        compact history if it is over budget
        response = provider.chat(history, tool schemas)
        if response has tool calls:
            append ONE assistant message listing every call
            run each call, one after another, append one tool message each
            continue
        append the final assistant message, stop

Cancellation is cooperative: abort() sets a threading.Event that is polled
at the start of each turn and between tool calls. A provider request or a
tool that is already running always completes.

A provider exception ends the current run() (it is not retried) and comes
back as "Error: ..." final content; the caller decides whether to start a
new run(). Running out of turns is not an error either: the result carries
MAX_TURNS_MARKER and aborted=False.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from teamcode import config
from teamcode.context import ConversationState
from teamcode.hooks import HookInput
from teamcode.messages import assistant_message, build_system_prompt, tool_result_message, user_message
from teamcode.tools import ToolContext, ToolDispatcher, ToolResult, deny_all

logger = logging.getLogger(__name__)

MAX_TURNS_MARKER = "[Max turns reached]"
CANCELLED_RESULT = ToolResult.fail("Cancelled before execution")


@dataclass
class LoopResult:
    final_content: str
    turns: int
    total_tokens: int
    aborted: bool


class AgentLoop:
    def __init__(self, provider, catalog, permissions, *,
                 model: str = None,
                 cwd=None,
                 ask_user: Callable[[str], str] = None,
                 hooks=None,
                 project_memory: str = "",
                 custom_instructions: str = "",
                 max_turns: int = None,
                 compact_threshold: float = None,
                 transcript_path=None,
                 name: str = "main",
                 on_content: Optional[Callable] = None,
                 on_tool_call: Optional[Callable] = None,
                 on_tool_result: Optional[Callable] = None,
                 on_turn_complete: Optional[Callable] = None,
                 on_compaction: Optional[Callable] = None):
        self.provider = provider
        self.catalog = catalog
        self.hooks = hooks
        self.name = name
        self.max_turns = max_turns or config.MAX_TURNS
        self.total_tokens = 0
        self.cancel = threading.Event()

        cwd = str(cwd or config.WORKDIR)
        self.context = ToolContext(cwd, permissions, ask_user or deny_all, self.cancel)
        self.dispatcher = ToolDispatcher(catalog, self.context, hooks)

        self.state = ConversationState(model or getattr(provider, "model", config.MODEL),
                                       compact_threshold, transcript_path)
        self.state.add(build_system_prompt(cwd, project_memory, custom_instructions))

        self.on_content = on_content
        self.on_tool_call = on_tool_call
        self.on_tool_result = on_tool_result
        self.on_turn_complete = on_turn_complete
        self.on_compaction = on_compaction

    @property
    def aborted(self) -> bool:
        return self.cancel.is_set()

    def abort(self):
        self.cancel.set()

    def run(self, user_input: str, reset_abort: bool = True) -> LoopResult:
        if reset_abort:
            self.cancel.clear()
        self.state.add(user_message(user_input))
        return self._drive()

    def run_continuation(self) -> LoopResult:
        """Keep going from the current history without a new user message."""
        return self._drive()

    def compact(self) -> str:
        self._fire("PreCompact")
        if self.on_compaction:
            self.on_compaction()
        return self.state.compact(self.provider)

    def _drive(self) -> LoopResult:
        turns = 0
        final_content = ""
        finished = False

        while turns < self.max_turns and not self.cancel.is_set():
            turns += 1

            if self.state.needs_compaction():
                self.compact()

            messages = self.state.messages
            tools = self.catalog.schemas()
            logger.debug("[%s] turn %d: sending %d messages, %d tools",
                         self.name, turns, len(messages), len(tools))

            try:
                response = self.provider.chat(messages, tools)
            except Exception as e:
                logger.error("[%s] provider call failed", self.name, exc_info=True)
                final_content = f"Error: {e}"
                finished = True
                break

            if response.usage:
                self.total_tokens += response.usage.total_tokens
            if response.content:
                final_content = response.content
                if self.on_content:
                    self.on_content(response.content)

            if response.tool_calls:
                self.state.add(assistant_message(response.content, response.tool_calls))
                for tc in response.tool_calls:
                    if self.cancel.is_set():
                        # every requested call still needs an answer
                        self.state.add(tool_result_message(tc.id, CANCELLED_RESULT))
                        continue
                    if self.on_tool_call:
                        self.on_tool_call(tc.name, tc.arguments)
                    result = self.dispatcher.execute(tc)
                    if self.on_tool_result:
                        self.on_tool_result(tc.name, result)
                    self.state.add(tool_result_message(tc.id, result))
                if self.on_turn_complete:
                    self.on_turn_complete(turns)
                continue

            self.state.add(assistant_message(response.content or ""))
            if self.on_turn_complete:
                self.on_turn_complete(turns)
            finished = True
            break

        if not finished and not self.cancel.is_set():
            logger.info("[%s] stopped after %d turns (turn limit)", self.name, turns)
            final_content = f"{final_content}\n\n{MAX_TURNS_MARKER}" if final_content else MAX_TURNS_MARKER

        self._fire("Stop")
        return LoopResult(final_content, turns, self.total_tokens, self.cancel.is_set())

    def _fire(self, event: str):
        if self.hooks is None:
            return
        try:
            self.hooks.fire(HookInput(event))
        except Exception:
            logger.error("Hook runner failed for %s", event, exc_info=True)
