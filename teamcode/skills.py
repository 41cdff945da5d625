"""
Skills: on-demand instructions kept out of the system prompt.

    .skills/git.md             skill "git"
    .skills/testing/SKILL.md   skill "testing"

Each file may start with frontmatter:

    ---
    description: Git workflow helpers
    tags: vcs
    ---
    body...

Only names and descriptions go into the system prompt. The body comes back
from load_skill when the model asks for it.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from teamcode.tools import Tool, ToolResult

logger = logging.getLogger(__name__)

FRONTMATTER = re.compile(r"^---\n(.*?)\n---\n(.*)", re.DOTALL)


@dataclass
class Skill:
    name: str
    description: str
    body: str
    path: Path
    tags: str = ""


def parse_frontmatter(text: str) -> tuple:
    """Split `---` delimited key: value metadata from the body."""
    match = FRONTMATTER.match(text)
    if not match:
        return {}, text
    meta = {}
    for line in match.group(1).strip().splitlines():
        if ":" in line:
            key, val = line.split(":", 1)
            meta[key.strip()] = val.strip()
    return meta, match.group(2).strip()


class SkillLoader:
    def __init__(self, skills_dir: Path):
        self.skills_dir = Path(skills_dir)
        self.skills = {}
        self._load_all()

    def _load_all(self):
        if not self.skills_dir.is_dir():
            return
        for entry in sorted(self.skills_dir.iterdir()):
            if entry.is_dir() and (entry / "SKILL.md").is_file():
                self._load(entry.name, entry / "SKILL.md")
            elif entry.is_file() and entry.suffix == ".md" and entry.name != "SKILL.md":
                self._load(entry.stem, entry)
        logger.debug("Loaded %d skills from %s", len(self.skills), self.skills_dir)

    def _load(self, name: str, path: Path):
        try:
            meta, body = parse_frontmatter(path.read_text())
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Skipping unreadable skill %s: %s", path, e)
            return
        self.skills[name] = Skill(name, meta.get("description") or f"Skill: {name}",
                                  body, path, meta.get("tags", ""))

    def __len__(self):
        return len(self.skills)

    def descriptions(self) -> str:
        if not self.skills:
            return "(no skills available)"
        lines = []
        for skill in self.skills.values():
            line = f"  - {skill.name}: {skill.description}"
            if skill.tags:
                line += f" [{skill.tags}]"
            lines.append(line)
        return "\n".join(lines)

    def content(self, name: str):
        skill = self.skills.get(name)
        if skill is None:
            return None
        return f'<skill name="{name}">\n{skill.body}\n</skill>'


def make_skill_tool(loader: SkillLoader) -> Tool:
    def load_skill(args: dict, context) -> ToolResult:
        name = args.get("name", "")
        body = loader.content(name)
        if body is None:
            available = ", ".join(loader.skills) or "none"
            return ToolResult.fail(f"Unknown skill '{name}'. Available: {available}")
        return ToolResult.ok(body)

    return Tool(
        name="load_skill",
        description="Load a skill's full instructions by name. Use before unfamiliar tasks.",
        parameters={"properties": {"name": {"type": "string"}}, "required": ["name"]},
        execute=load_skill,
    )
