"""
Skill discovery and management.

A skill is a directory under the skills dir holding a SKILL.md file with a
small frontmatter block (name, description) followed by markdown instructions.
"""

import logging
import os
import re
import shutil
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from config import get_skills_dir

logger = logging.getLogger(__name__)

_FRONTMATTER_RE = re.compile(r"^---\s*\n([\s\S]*?)\n---\s*\n([\s\S]*)$")
_KV_RE = re.compile(r"^(\w+)\s*:\s*(.+)$")
_SLUG_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


@dataclass
class SkillInfo:
    name: str
    description: str
    location: str
    content: str
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SkillError(ValueError):
    """Invalid skill name or content."""


def parse_skill_md(raw: str) -> Optional[Dict[str, str]]:
    """Parse frontmatter + body. Returns None when there is no name."""
    match = _FRONTMATTER_RE.match(raw)
    if not match:
        return None
    frontmatter, body = match.group(1), match.group(2).strip()

    fields = {"name": "", "description": ""}
    for line in frontmatter.split("\n"):
        kv = _KV_RE.match(line)
        if kv and kv.group(1) in fields:
            fields[kv.group(1)] = kv.group(2).strip().strip("\"'")

    if not fields["name"]:
        return None
    return {"name": fields["name"], "description": fields["description"], "content": body}


def discover_skills(skills_dir: Optional[str] = None) -> List[SkillInfo]:
    """Scan {skills_dir}/*/SKILL.md. Later duplicates of a name replace earlier ones."""
    root = skills_dir or get_skills_dir()
    if not os.path.isdir(root):
        return []

    found: Dict[str, SkillInfo] = {}
    for entry in sorted(os.listdir(root)):
        skill_md = os.path.join(root, entry, "SKILL.md")
        if not os.path.isfile(skill_md):
            continue
        try:
            with open(skill_md, "r", encoding="utf-8") as f:
                parsed = parse_skill_md(f.read())
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping unreadable skill {skill_md}: {e}")
            continue
        if parsed is None:
            logger.debug(f"Skipping {skill_md}: missing frontmatter name")
            continue
        found[parsed["name"]] = SkillInfo(
            name=parsed["name"],
            description=parsed["description"],
            location=skill_md,
            content=parsed["content"],
        )
    return list(found.values())


def get_skill(name: str, skills_dir: Optional[str] = None) -> Optional[SkillInfo]:
    for skill in discover_skills(skills_dir):
        if skill.name == name:
            return skill
    return None


def _skill_dir(slug: str, skills_dir: Optional[str]) -> str:
    if not slug or not _SLUG_RE.match(slug) or slug in (".", ".."):
        raise SkillError(f"Invalid skill name: {slug!r}")
    return os.path.join(skills_dir or get_skills_dir(), slug)


def create_skill(name: str, description: str, content: str,
                 skills_dir: Optional[str] = None) -> SkillInfo:
    directory = _skill_dir(name, skills_dir)
    os.makedirs(directory, exist_ok=True)
    location = os.path.join(directory, "SKILL.md")
    with open(location, "w", encoding="utf-8") as f:
        f.write(f"---\nname: {name}\ndescription: {description}\n---\n\n{content}\n")
    logger.info(f"Skill created: {name}")
    return SkillInfo(name=name, description=description, location=location, content=content)


def create_skill_raw(slug: str, raw: str, skills_dir: Optional[str] = None) -> str:
    """Write SKILL.md verbatim. Returns the file location."""
    if parse_skill_md(raw) is None:
        raise SkillError("SKILL.md must start with a frontmatter block containing a name")
    directory = _skill_dir(slug, skills_dir)
    os.makedirs(directory, exist_ok=True)
    location = os.path.join(directory, "SKILL.md")
    with open(location, "w", encoding="utf-8") as f:
        f.write(raw)
    logger.info(f"Skill imported: {slug}")
    return location


def delete_skill(name: str, skills_dir: Optional[str] = None) -> bool:
    directory = _skill_dir(name, skills_dir)
    if not os.path.isdir(directory):
        return False
    shutil.rmtree(directory)
    logger.info(f"Skill deleted: {name}")
    return True


# --- skill tool ---

SKILL_TOOL_DESCRIPTION = "\n".join([
    "Load a specialized skill that provides domain-specific instructions and workflows.",
    "When you recognize that a task matches one of the available skills, use this tool to load the full skill instructions.",
    "The skill will inject detailed instructions, workflows, and references into the conversation context.",
])


def load_skill(name: str) -> str:
    skill = get_skill(name)
    if skill is None:
        available = ", ".join(s.name for s in discover_skills())
        return f'Skill "{name}" not found. Available skills: {available or "none"}'
    return "\n".join([
        f'<skill_content name="{skill.name}">',
        f"# Skill: {skill.name}",
        "",
        skill.content,
        "",
        "</skill_content>",
    ])


def skill_tool_description() -> str:
    """Tool description listing the installed skills."""
    skills = discover_skills()
    if not skills:
        return SKILL_TOOL_DESCRIPTION
    listing = "\n".join(f"- {s.name}: {s.description}" for s in skills)
    return f"{SKILL_TOOL_DESCRIPTION}\n\nAvailable skills:\n{listing}"
