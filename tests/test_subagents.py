"""
Tests for teamcode.subagents - presets, isolation and the Task tool.
"""
import os
import sys
import threading

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from tests.helpers import RecordingHooks, ScriptedProvider, call, echo_tool, make_catalog, make_context, run_tests, text

from teamcode.subagents import AGENT_TYPES, AgentType, SubagentManager, make_task_tool
from teamcode.tools import Tool, ToolResult


def catalog_with_writes():
    writes = []

    def write(args, ctx):
        writes.append(args.get("path"))
        return ToolResult.ok("written")

    catalog = make_catalog(
        echo_tool("read_file"),
        Tool("write_file", "", {"properties": {"path": {"type": "string"}}}, write),
    )
    return catalog, writes


def test_presets():
    assert set(AGENT_TYPES) == {"explore", "code", "plan"}
    assert AGENT_TYPES["explore"].permission_mode == "plan"
    assert AGENT_TYPES["plan"].permission_mode == "plan"
    assert AGENT_TYPES["code"].permission_mode == "dontAsk"
    assert AGENT_TYPES["code"].tools == ["*"]
    print("PASS: test_presets")


def test_unknown_subagent_structured_failure():
    manager = SubagentManager(ScriptedProvider(), make_catalog())
    result = manager.run("wizard", "do magic")
    assert not result.success
    assert result.name == "wizard"
    assert result.turns == 0
    assert 'Subagent "wizard" not found' in result.error
    assert "explore" in result.error
    print("PASS: test_unknown_subagent_structured_failure")


def test_run_returns_final_output_only():
    provider = ScriptedProvider([call("read_file", {"text": "file body"}), text("Summary: it's a parser.")])
    manager = SubagentManager(provider, make_catalog(echo_tool("read_file")))
    result = manager.run("explore", "what is in src?")
    assert result.success
    assert result.output == "Summary: it's a parser."
    assert result.turns == 2
    assert result.total_tokens == 30
    assert not manager.is_running("explore")
    print("PASS: test_run_returns_final_output_only")


def test_explore_is_read_only():
    catalog, writes = catalog_with_writes()
    provider = ScriptedProvider([call("write_file", {"path": "x"}), text("could not write")])
    result = SubagentManager(provider, catalog).run("explore", "try writing")
    assert result.success
    assert writes == []
    tools_offered = [t["name"] for t in provider.requests[0]["tools"]]
    assert tools_offered == ["read_file"], "catalog restricted to read-only tools"
    print("PASS: test_explore_is_read_only")


def test_code_agent_gets_full_catalog_and_no_prompts():
    catalog, writes = catalog_with_writes()
    provider = ScriptedProvider([call("write_file", {"path": "out.py"}), text("done")])
    result = SubagentManager(provider, catalog).run("code", "write out.py")
    assert result.success
    assert writes == ["out.py"]
    print("PASS: test_code_agent_gets_full_catalog_and_no_prompts")


def test_custom_type_and_hooks():
    hooks = RecordingHooks()
    manager = SubagentManager(ScriptedProvider([text("reviewed")]), make_catalog(), hooks=hooks)
    manager.register(AgentType("reviewer", "Reviews code", "You review code.", max_turns=5))
    assert manager.get("reviewer").max_turns == 5
    assert "reviewer" in [a.name for a in manager.available()]
    result = manager.run("reviewer", "review main.py")
    assert result.output == "reviewed"
    events = hooks.events()
    assert events[0] == "SubagentStart" and events[-1] == "SubagentStop"
    print("PASS: test_custom_type_and_hooks")


def test_abort_unknown_returns_false():
    manager = SubagentManager(ScriptedProvider(), make_catalog())
    assert manager.abort("explore") is False
    manager.abort_all()
    print("PASS: test_abort_unknown_returns_false")


def test_abort_reaches_every_run_of_a_type():
    entered = []
    both_in = threading.Event()
    release = threading.Event()

    def slow(messages):
        entered.append(True)
        if len(entered) == 2:
            both_in.set()
        release.wait(5)
        return text("late answer")

    manager = SubagentManager(ScriptedProvider([slow, slow]), make_catalog())
    results = []
    threads = [threading.Thread(target=lambda: results.append(manager.run("explore", "look around")))
               for _ in range(2)]
    for t in threads:
        t.start()
    assert both_in.wait(5)
    assert manager.is_running("explore")
    assert manager.abort("explore") is True
    release.set()
    for t in threads:
        t.join(5)

    assert len(results) == 2
    assert all(not r.success for r in results), "both concurrent runs were aborted"
    assert not manager.is_running("explore")
    print("PASS: test_abort_reaches_every_run_of_a_type")


def test_subagents_never_get_lead_tools():
    catalog = make_catalog(echo_tool("read_file"), echo_tool("Task"), echo_tool("TeamCreate"),
                           echo_tool("SendMessage"))
    provider = ScriptedProvider([text("done")])
    SubagentManager(provider, catalog).run("code", "refactor")
    offered = [t["name"] for t in provider.requests[0]["tools"]]
    assert offered == ["read_file"], "no nested delegation from a subagent"
    print("PASS: test_subagents_never_get_lead_tools")


def test_task_tool():
    provider = ScriptedProvider([text("found 3 files")])
    tool = make_task_tool(SubagentManager(provider, make_catalog()))
    assert tool.name == "Task"
    assert tool.schema()["input_schema"]["properties"]["agent_type"]["enum"] == ["explore", "code", "plan"]

    result = tool.execute({"description": "scan", "prompt": "list files", "agent_type": "explore"},
                          make_context())
    assert result.success and result.output == "found 3 files"

    bad = tool.execute({"prompt": "x", "agent_type": "nope"}, make_context())
    assert not bad.success
    print("PASS: test_task_tool")


if __name__ == "__main__":
    sys.exit(0 if run_tests([
        test_presets,
        test_unknown_subagent_structured_failure,
        test_run_returns_final_output_only,
        test_explore_is_read_only,
        test_code_agent_gets_full_catalog_and_no_prompts,
        test_custom_type_and_hooks,
        test_abort_unknown_returns_false,
        test_abort_reaches_every_run_of_a_type,
        test_subagents_never_get_lead_tools,
        test_task_tool,
    ]) else 1)
