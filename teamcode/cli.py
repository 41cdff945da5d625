"""
Interactive REPL for the lead agent.

    You: <prompt>      run the lead's agent loop
    /compact           summarize older history now
    /tasks             show the team task list
    /team              show teammates and their status
    /mode <mode>       switch permission mode
    exit               quit

Configuration comes from the environment (see teamcode.config) and the
optional .teamcode/settings.json in the working directory.
"""

from teamcode import config
from teamcode.builtin_tools import default_catalog
from teamcode.context import SKIPPED
from teamcode.hooks import HookInput, HookRunner
from teamcode.log import setup_logging
from teamcode.loop import AgentLoop
from teamcode.permissions import MODES, PermissionEvaluator
from teamcode.provider import create_provider
from teamcode.skills import SkillLoader, make_skill_tool
from teamcode.subagents import SubagentManager, make_task_tool
from teamcode.team import TeamCoordinator, make_team_tools


def ask_user(question: str) -> str:
    return input(f"\n{question} ")


def print_tool_call(name: str, args: dict):
    detail = args.get("command") or args.get("path") or ""
    print(f"\n> {name} {detail}".rstrip())


def print_tool_result(name: str, result):
    text = result.output if result.success else f"Error: {result.error}"
    print(f"  {text[:200]}")


def build_lead(settings: dict, hooks: HookRunner):
    provider = create_provider(config.PROVIDER, settings.get("model") or config.MODEL)
    permissions = PermissionEvaluator.from_settings(settings)
    catalog = default_catalog()
    skills = SkillLoader(config.SKILLS_DIR)
    catalog.register(make_skill_tool(skills))

    subagents = SubagentManager(provider, catalog, config.WORKDIR, ask_user, hooks)
    team = TeamCoordinator(
        provider, catalog, cwd=config.WORKDIR, hooks=hooks,
        provider_factory=lambda model: create_provider(config.PROVIDER, model),
        on_all_complete=lambda: print("\n[Team] All tasks completed."),
    )
    catalog.register(make_task_tool(subagents))
    catalog.register_all(make_team_tools(team))

    loop = AgentLoop(
        provider, catalog, permissions,
        cwd=config.WORKDIR,
        ask_user=ask_user,
        hooks=hooks,
        project_memory=config.load_project_memory(),
        custom_instructions=f"Skills available (use load_skill):\n{skills.descriptions()}" if len(skills) else "",
        max_turns=settings.get("maxTurns"),
        transcript_path=config.TRANSCRIPT_DIR / "lead.jsonl",
        name="lead",
        on_content=print,
        on_tool_call=print_tool_call,
        on_tool_result=print_tool_result,
        on_compaction=lambda: print("[auto-compact triggered]"),
    )
    return loop, permissions, team


def main():
    setup_logging(config.LOG_LEVEL)
    settings = config.load_settings()
    hooks = HookRunner.from_settings(settings, cwd=config.WORKDIR)
    loop, permissions, team = build_lead(settings, hooks)

    print(f"teamcode - {config.WORKDIR}")
    print(f"Model: {loop.state.model} ({config.PROVIDER}), mode: {permissions.mode}")
    print("Commands: /compact, /tasks, /team, /mode <mode>, exit")
    print()
    hooks.fire(HookInput("SessionStart"))

    try:
        while True:
            try:
                user_input = input("You: ").strip()
            except (EOFError, KeyboardInterrupt):
                break

            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit", "q"):
                break

            if user_input == "/compact":
                outcome = loop.compact()
                print("[Nothing to compress.]\n" if outcome == SKIPPED else f"[Compaction: {outcome}]\n")
                continue

            if user_input == "/tasks":
                print(team.queue.summary() if team.is_active else "No active team.")
                print()
                continue

            if user_input == "/team":
                print(team.summary())
                print()
                continue

            if user_input.startswith("/mode"):
                parts = user_input.split()
                if len(parts) != 2:
                    print(f"Current mode: {permissions.mode}. Valid: {', '.join(MODES)}\n")
                    continue
                try:
                    permissions.set_mode(parts[1])
                    print(f"[Permission mode: {permissions.mode}]\n")
                except ValueError as e:
                    print(f"Error: {e}\n")
                continue

            hooks.fire(HookInput("UserPromptSubmit"))
            try:
                result = loop.run(user_input)
            except KeyboardInterrupt:
                loop.abort()
                print("\n[Interrupted]")
                continue
            if result.final_content.startswith("Error:"):
                print(result.final_content)
            print()
    finally:
        if team.is_active:
            team.cleanup()
        hooks.fire(HookInput("SessionEnd"))


if __name__ == "__main__":
    main()
