"""
Tests for teamcode.tools - catalog and the dispatch pipeline.
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from tests.helpers import RecordingHooks, echo_tool, failing_tool, feedback, make_context, run_tests

from teamcode.provider import ToolCallRequest
from teamcode.tools import Tool, ToolCatalog, ToolDispatcher, ToolResult


def request(name, **arguments):
    return ToolCallRequest(id="call_1", name=name, arguments=arguments)


def write_tool():
    written = []

    def run(args, ctx):
        written.append(args["path"])
        return ToolResult.ok(f"wrote {args['path']}")

    tool = Tool("write_file", "Write a file.", {"properties": {"path": {"type": "string"}}}, run)
    return tool, written


# =============================================================================
# Catalog
# =============================================================================

def test_catalog_register_and_lookup():
    catalog = ToolCatalog([echo_tool()])
    assert "echo" in catalog
    assert catalog.has("echo")
    assert catalog.get("missing") is None
    assert catalog.names() == ["echo"]
    schema = catalog.schemas()[0]
    assert schema["name"] == "echo"
    assert schema["input_schema"]["type"] == "object"
    assert schema["input_schema"]["required"] == ["text"]
    print("PASS: test_catalog_register_and_lookup")


def test_catalog_duplicate_overwrites():
    catalog = ToolCatalog()
    catalog.register(echo_tool())
    replacement = Tool("echo", "v2", {"properties": {}}, lambda a, c: ToolResult.ok("v2"))
    catalog.register(replacement)
    assert len(catalog) == 1
    assert catalog.get("echo").description == "v2"
    print("PASS: test_catalog_duplicate_overwrites")


def test_catalog_subset_and_without():
    catalog = ToolCatalog([echo_tool("a"), echo_tool("b"), echo_tool("c")])
    assert catalog.subset(["a", "c", "zzz"]).names() == ["a", "c"]
    assert catalog.without(["b"]).names() == ["a", "c"]
    assert len(catalog) == 3, "derived catalogs leave the original alone"
    print("PASS: test_catalog_subset_and_without")


# =============================================================================
# Dispatcher
# =============================================================================

def test_unknown_tool_fails_with_available_list():
    d = ToolDispatcher(ToolCatalog([echo_tool()]), make_context())
    result = d.execute(request("nope"))
    assert not result.success
    assert "Unknown tool: nope" in result.error
    assert "echo" in result.error
    print("PASS: test_unknown_tool_fails_with_available_list")


def test_tool_exception_becomes_failed_result():
    hooks = RecordingHooks()
    d = ToolDispatcher(ToolCatalog([failing_tool()]), make_context(), hooks)
    result = d.execute(request("boom"))
    assert not result.success
    assert result.error == "kaboom"
    assert hooks.events() == ["PreToolUse", "PostToolUseFailure"]
    print("PASS: test_tool_exception_becomes_failed_result")


def test_success_fires_pre_and_post_hooks():
    hooks = RecordingHooks()
    d = ToolDispatcher(ToolCatalog([echo_tool()]), make_context(), hooks)
    result = d.execute(request("echo", text="hi"))
    assert result.success and result.output == "hi"
    assert hooks.events() == ["PreToolUse", "PostToolUse"]
    assert hooks.fired[1].tool_result["output"] == "hi"
    print("PASS: test_success_fires_pre_and_post_hooks")


def test_denied_tool_never_runs():
    tool, written = write_tool()
    ctx = make_context("plan")
    hooks = RecordingHooks()
    result = ToolDispatcher(ToolCatalog([tool]), ctx, hooks).execute(request("write_file", path="x"))
    assert not result.success
    assert "Permission denied" in result.error
    assert written == []
    assert hooks.events() == [], "no hooks for a call that never started"
    print("PASS: test_denied_tool_never_runs")


def test_ask_user_refusal():
    tool, written = write_tool()
    questions = []

    def ask(q):
        questions.append(q)
        return "n"

    ctx = make_context("default", ask_user=ask)
    result = ToolDispatcher(ToolCatalog([tool]), ctx).execute(request("write_file", path="x"))
    assert not result.success
    assert "User denied" in result.error
    assert written == []
    assert "Write file: x" in questions[0]
    print("PASS: test_ask_user_refusal")


def test_ask_user_approve_once():
    tool, written = write_tool()
    answers = iter(["y", "n"])
    ctx = make_context("default", ask_user=lambda q: next(answers))
    d = ToolDispatcher(ToolCatalog([tool]), ctx)
    assert d.execute(request("write_file", path="a")).success
    assert not d.execute(request("write_file", path="b")).success, "yes means once"
    assert written == ["a"]
    print("PASS: test_ask_user_approve_once")


def test_ask_user_always_grants_session():
    tool, written = write_tool()
    asked = []
    ctx = make_context("default", ask_user=lambda q: asked.append(q) or "always")
    d = ToolDispatcher(ToolCatalog([tool]), ctx)
    assert d.execute(request("write_file", path="a")).success
    assert d.execute(request("write_file", path="b")).success
    assert len(asked) == 1
    assert written == ["a", "b"]
    print("PASS: test_ask_user_always_grants_session")


def test_ask_user_eof_is_refusal():
    tool, written = write_tool()

    def ask(q):
        raise EOFError

    ctx = make_context("default", ask_user=ask)
    assert not ToolDispatcher(ToolCatalog([tool]), ctx).execute(request("write_file", path="a")).success
    assert written == []
    print("PASS: test_ask_user_eof_is_refusal")


def test_hook_feedback_appended_to_output():
    hooks = RecordingHooks({"PostToolUse": [feedback("lint: 2 warnings")]})
    d = ToolDispatcher(ToolCatalog([echo_tool()]), make_context(), hooks)
    result = d.execute(request("echo", text="done"))
    assert result.success
    assert result.output.startswith("done")
    assert "[Hook feedback]\nlint: 2 warnings" in result.output
    print("PASS: test_hook_feedback_appended_to_output")


def test_non_dict_arguments_rejected():
    d = ToolDispatcher(ToolCatalog([echo_tool()]), make_context())
    result = d.execute(ToolCallRequest(id="1", name="echo", arguments=["not", "a", "dict"]))
    assert not result.success
    assert "must be an object" in result.error
    print("PASS: test_non_dict_arguments_rejected")


def test_execute_all_is_sequential_and_stops_on_cancel():
    order = []
    ctx = make_context()

    def run(args, c):
        order.append(args["n"])
        if args["n"] == 2:
            c.cancel.set()
        return ToolResult.ok(str(args["n"]))

    tool = Tool("step", "", {"properties": {}}, run)
    d = ToolDispatcher(ToolCatalog([tool]), ctx)
    results = d.execute_all([ToolCallRequest(str(n), "step", {"n": n}) for n in (1, 2, 3)])
    assert order == [1, 2]
    assert [r.output for r in results] == ["1", "2"]
    print("PASS: test_execute_all_is_sequential_and_stops_on_cancel")


if __name__ == "__main__":
    sys.exit(0 if run_tests([
        test_catalog_register_and_lookup,
        test_catalog_duplicate_overwrites,
        test_catalog_subset_and_without,
        test_unknown_tool_fails_with_available_list,
        test_tool_exception_becomes_failed_result,
        test_success_fires_pre_and_post_hooks,
        test_denied_tool_never_runs,
        test_ask_user_refusal,
        test_ask_user_approve_once,
        test_ask_user_always_grants_session,
        test_ask_user_eof_is_refusal,
        test_hook_feedback_appended_to_output,
        test_non_dict_arguments_rejected,
        test_execute_all_is_sequential_and_stops_on_cancel,
    ]) else 1)
