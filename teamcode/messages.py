"""
Conversation message builders.

History is a list of plain dicts in chat-completions shape:

    {"role": "system",    "content": "..."}
    {"role": "user",      "content": "..."}
    {"role": "assistant", "content": "..." | None, "tool_calls": [...]}
    {"role": "tool",      "tool_call_id": "...", "content": "..."}

Each entry of an assistant message's tool_calls is
{"id", "type": "function", "function": {"name", "arguments": <json str>}}.
A tool message must answer a tool_calls entry of the assistant message
right before it. Providers translate this shape to their own wire format.
"""

import json
import platform

MAX_TOOL_OUTPUT = 50000

SYSTEM_PROMPT_BASE = """You are a coding agent running in the user's terminal.
You have tools to read and edit files and to run shell commands.

Loop: plan -> act with tools -> report.

Rules:
- Read files before editing them.
- Make minimal, focused edits. Preserve the existing style.
- Run tests after making changes when possible.
- Prefer tools over prose. Act, don't just explain.
- Never run destructive commands without explicit confirmation.
- After finishing, summarize what changed."""


def build_system_prompt(cwd, project_memory: str = "", custom_instructions: str = "") -> dict:
    parts = [SYSTEM_PROMPT_BASE]
    parts.append(f"\nCurrent working directory: {cwd}")
    parts.append(f"Platform: {platform.system()}")
    if project_memory:
        parts.append(f"\n--- Project Memory ---\n{project_memory}\n--- End Project Memory ---")
    if custom_instructions:
        parts.append(f"\n--- Instructions ---\n{custom_instructions}\n--- End Instructions ---")
    return {"role": "system", "content": "\n".join(parts)}


def user_message(content: str) -> dict:
    return {"role": "user", "content": content}


def assistant_message(content: str = None, tool_calls: list = None) -> dict:
    """Assistant turn. tool_calls is a list of ToolCallRequest."""
    msg = {"role": "assistant", "content": content}
    if tool_calls:
        msg["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
            }
            for tc in tool_calls
        ]
    return msg


def tool_result_message(tool_call_id: str, result) -> dict:
    """Render a ToolResult for the model. Failures lead with 'Error:'."""
    if result.success:
        content = result.output
    else:
        content = f"Error: {result.error or 'Unknown error'}\n{result.output}".rstrip()
    return {"role": "tool", "tool_call_id": tool_call_id, "content": content[:MAX_TOOL_OUTPUT]}


def tool_call_ids(message: dict) -> list:
    """Ids requested by an assistant message ([] for any other message)."""
    if message.get("role") != "assistant":
        return []
    return [tc.get("id") for tc in message.get("tool_calls") or []]


def content_text(message: dict) -> str:
    content = message.get("content")
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return json.dumps(content, default=str)
