"""
Tests for teamcode.config and teamcode.messages.
"""
import os
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from tests.helpers import run_tests

from teamcode import config
from teamcode.messages import (
    MAX_TOOL_OUTPUT, assistant_message, build_system_prompt, content_text, tool_call_ids,
    tool_result_message,
)
from teamcode.provider import ToolCallRequest
from teamcode.tools import ToolResult


# =============================================================================
# Settings and project memory
# =============================================================================

def test_load_settings_defaults_when_missing():
    settings = config.load_settings(Path(tempfile.mkdtemp()) / "settings.json")
    assert settings["permissions"] == {"allow": [], "deny": []}
    assert settings["hooks"] == []
    assert settings["maxTurns"] == config.MAX_TURNS
    print("PASS: test_load_settings_defaults_when_missing")


def test_load_settings_reads_file():
    path = Path(tempfile.mkdtemp()) / "settings.json"
    path.write_text('{"defaultMode": "plan", "permissions": {"allow": ["bash(ls*)"]},'
                    ' "hooks": [{"event": "Stop", "command": "true"}]}')
    settings = config.load_settings(path)
    assert settings["defaultMode"] == "plan"
    assert settings["permissions"]["allow"] == ["bash(ls*)"]
    assert settings["permissions"]["deny"] == []
    assert settings["hooks"][0]["event"] == "Stop"
    print("PASS: test_load_settings_reads_file")


def test_load_settings_ignores_corrupt_file():
    path = Path(tempfile.mkdtemp()) / "settings.json"
    path.write_text("{oops")
    assert config.load_settings(path)["permissions"]["allow"] == []
    path.write_text("[1, 2]")
    assert config.load_settings(path)["hooks"] == []
    print("PASS: test_load_settings_ignores_corrupt_file")


def test_load_settings_does_not_share_defaults():
    path = Path(tempfile.mkdtemp()) / "missing.json"
    config.load_settings(path)["permissions"]["allow"].append("bash")
    assert config.load_settings(path)["permissions"]["allow"] == []
    print("PASS: test_load_settings_does_not_share_defaults")


def test_project_memory():
    root = Path(tempfile.mkdtemp())
    assert config.load_project_memory(root) == ""
    (root / config.MEMORY_FILE).write_text("Always run make lint.")
    assert config.load_project_memory(root) == "Always run make lint."
    print("PASS: test_project_memory")


# =============================================================================
# Message builders
# =============================================================================

def test_assistant_message_serializes_tool_calls():
    msg = assistant_message(None, [ToolCallRequest("c1", "bash", {"command": "ls"})])
    assert msg["content"] is None
    assert msg["tool_calls"] == [{"id": "c1", "type": "function",
                                  "function": {"name": "bash", "arguments": '{"command": "ls"}'}}]
    assert tool_call_ids(msg) == ["c1"]
    assert "tool_calls" not in assistant_message("plain")
    assert tool_call_ids({"role": "user", "content": "x"}) == []
    print("PASS: test_assistant_message_serializes_tool_calls")


def test_tool_result_message():
    ok = tool_result_message("c1", ToolResult.ok("fine"))
    assert ok == {"role": "tool", "tool_call_id": "c1", "content": "fine"}
    failed = tool_result_message("c2", ToolResult.fail("no such file", "partial"))
    assert failed["content"] == "Error: no such file\npartial"
    huge = tool_result_message("c3", ToolResult.ok("x" * (MAX_TOOL_OUTPUT + 10)))
    assert len(huge["content"]) == MAX_TOOL_OUTPUT
    print("PASS: test_tool_result_message")


def test_build_system_prompt():
    prompt = build_system_prompt("/work", project_memory="Use pytest.")
    assert prompt["role"] == "system"
    assert "Current working directory: /work" in prompt["content"]
    assert "--- Project Memory ---\nUse pytest." in prompt["content"]
    assert "--- Instructions ---" not in prompt["content"]
    print("PASS: test_build_system_prompt")


def test_content_text():
    assert content_text({"role": "assistant", "content": None}) == ""
    assert content_text({"role": "user", "content": [{"type": "text", "text": "hi"}]}).startswith("[")
    print("PASS: test_content_text")


if __name__ == "__main__":
    sys.exit(0 if run_tests([
        test_load_settings_defaults_when_missing,
        test_load_settings_reads_file,
        test_load_settings_ignores_corrupt_file,
        test_load_settings_does_not_share_defaults,
        test_project_memory,
        test_assistant_message_serializes_tool_calls,
        test_tool_result_message,
        test_build_system_prompt,
        test_content_text,
    ]) else 1)
