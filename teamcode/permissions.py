"""
Permission policy.

Before any tool runs, the dispatcher asks the evaluator what to do with the
call. The first matching step decides:

    1. mode bypassPermissions      -> allow
    2. a matching deny rule        -> deny
    3. a matching allow rule       -> allow
    4. a session grant             -> allow   (tool, or bash(<first word>))
    5. read-only tool              -> allow
    6. mode default:
         dontAsk      allow everything
         acceptEdits  allow file edits, ask for shell
         plan         deny every write-class tool
         default      ask for write-class tools, allow the rest

Rules use the settings grammar `ToolName` or `ToolName(specifier)`, where
the specifier is matched against the tool's primary argument (the command
for bash, the path for file tools) and `*` matches anything:

    bash(git *)          any git command
    write_file(src/*)    writes under src/
"""

import re
import threading
from dataclasses import dataclass, field

MODES = ("default", "acceptEdits", "plan", "dontAsk", "bypassPermissions")
MODE_ALIASES = {"bypass": "bypassPermissions"}

READ_TOOLS = {"read_file", "list_dir", "glob", "grep", "ask_user", "load_skill"}
EDIT_TOOLS = {"write_file", "edit_file", "multi_edit"}
SHELL_TOOLS = {"bash"}
WRITE_TOOLS = EDIT_TOOLS | SHELL_TOOLS

# Tool -> argument the rule specifier is matched against
SPECIFIER_ARGS = {
    "bash": "command",
    "read_file": "path",
    "write_file": "path",
    "edit_file": "path",
    "multi_edit": "path",
    "list_dir": "path",
    "glob": "path",
    "grep": "path",
}

RULE_PATTERN = re.compile(r"^([\w-]+)(?:\((.+)\))?$")


@dataclass
class PermissionRule:
    disposition: str  # allow | deny
    tool: str
    specifier: str = None
    _regex: re.Pattern = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if self.specifier:
            self._regex = compile_wildcard(self.specifier)

    @classmethod
    def parse(cls, disposition: str, raw: str) -> "PermissionRule":
        match = RULE_PATTERN.match(raw.strip())
        if not match:
            return cls(disposition, raw.strip())
        return cls(disposition, match.group(1), match.group(2))

    def matches(self, tool: str, args: dict) -> bool:
        if self.tool != tool:
            return False
        if not self.specifier:
            return True
        arg_name = SPECIFIER_ARGS.get(tool)
        value = (args or {}).get(arg_name) if arg_name else None
        if not isinstance(value, str):
            return False
        return self._regex.fullmatch(value) is not None

    def __str__(self):
        return f"{self.tool}({self.specifier})" if self.specifier else self.tool


def compile_wildcard(pattern: str) -> re.Pattern:
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")), re.DOTALL)


@dataclass
class PermissionDecision:
    behavior: str  # allow | deny | ask
    reason: str = ""
    description: str = ""

    @property
    def allowed(self) -> bool:
        return self.behavior == "allow"

    @property
    def denied(self) -> bool:
        return self.behavior == "deny"

    @property
    def needs_approval(self) -> bool:
        return self.behavior == "ask"


ALLOW = PermissionDecision("allow")


def deny(reason: str) -> PermissionDecision:
    return PermissionDecision("deny", reason=reason)


def ask(description: str) -> PermissionDecision:
    return PermissionDecision("ask", description=description)


def normalize_mode(mode: str) -> str:
    mode = MODE_ALIASES.get(mode, mode)
    if mode not in MODES:
        raise ValueError(f"Unknown permission mode '{mode}'. Valid: {', '.join(MODES)}")
    return mode


class PermissionEvaluator:
    """Evaluates tool calls against mode, rules and session grants.

    Shared between threads when teammates reuse one evaluator, so rule and
    grant tables are guarded by a lock.
    """

    def __init__(self, mode: str = "default", allow: list = None, deny: list = None):
        self.mode = normalize_mode(mode)
        self._rules = []
        self._session = set()
        self._lock = threading.Lock()
        for raw in allow or []:
            self.add_allow_rule(raw)
        for raw in deny or []:
            self.add_deny_rule(raw)

    @classmethod
    def from_settings(cls, settings: dict, mode: str = None) -> "PermissionEvaluator":
        perms = settings.get("permissions", {})
        return cls(mode or settings.get("defaultMode", "default"),
                   allow=perms.get("allow"), deny=perms.get("deny"))

    def set_mode(self, mode: str):
        self.mode = normalize_mode(mode)

    def add_allow_rule(self, raw: str):
        with self._lock:
            self._rules.append(PermissionRule.parse("allow", raw))

    def add_deny_rule(self, raw: str):
        with self._lock:
            self._rules.append(PermissionRule.parse("deny", raw))

    @property
    def rules(self) -> list:
        with self._lock:
            return list(self._rules)

    def allow_for_session(self, key: str):
        with self._lock:
            self._session.add(key)

    @staticmethod
    def session_key(tool: str, args: dict = None) -> str:
        if tool in SHELL_TOOLS:
            command = (args or {}).get("command")
            if isinstance(command, str) and command.split():
                return f"{tool}({command.split()[0]})"
        return tool

    def check(self, tool: str, args: dict = None) -> PermissionDecision:
        args = args or {}
        if self.mode == "bypassPermissions":
            return ALLOW

        rules = self.rules
        for rule in rules:
            if rule.disposition == "deny" and rule.matches(tool, args):
                return deny(f"Denied by rule: {rule}")
        for rule in rules:
            if rule.disposition == "allow" and rule.matches(tool, args):
                return ALLOW

        with self._lock:
            granted = tool in self._session or self.session_key(tool, args) in self._session
        if granted:
            return ALLOW

        if tool in READ_TOOLS:
            return ALLOW

        if self.mode == "dontAsk":
            return ALLOW
        if self.mode == "acceptEdits":
            if tool in SHELL_TOOLS:
                return ask(self.describe(tool, args))
            return ALLOW
        if self.mode == "plan":
            if tool in WRITE_TOOLS:
                return deny("Plan mode: write operations are not allowed")
            return ALLOW
        if tool in WRITE_TOOLS:
            return ask(self.describe(tool, args))
        return ALLOW

    @staticmethod
    def describe(tool: str, args: dict = None) -> str:
        args = args or {}
        if tool in SHELL_TOOLS:
            return f"Execute: {str(args.get('command', 'unknown command'))[:100]}"
        if tool in ("edit_file", "multi_edit"):
            return f"Edit file: {args.get('path', 'unknown')}"
        if tool == "write_file":
            return f"Write file: {args.get('path', 'unknown')}"
        return f"{tool} with args: {str(args)[:100]}"
