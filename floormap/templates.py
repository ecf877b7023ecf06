"""Data shared by the HTML page templates: menu, build information, template files."""

from __future__ import annotations

import functools
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

__all__ = [
    "BACKEND_TYPE",
    "TEMPLATE_DIR",
    "TemplateError",
    "MenuItem",
    "get_page_menu",
    "menu_to_data",
    "git_commit_info",
    "get_page_data",
    "template_path",
    "load_template",
]

BACKEND_TYPE = "Sqlite"
TEMPLATE_DIR = Path("templates")
TEMPLATE_SUFFIX = ".mustache"

_SECTION_TAG = re.compile(r"\{\{\s*([#^/])\s*([^}]*?)\s*\}\}")


class TemplateError(ValueError):
    """A template file is malformed."""


@dataclass
class MenuItem:
    """An entry of the page menu, with optional sub-entries."""

    title: str
    link: str
    sub: list[MenuItem] = field(default_factory=list)

    def item(self, title: str, link: str) -> MenuItem:
        """Add a sub-entry and return it."""
        child = MenuItem(title, link)
        self.sub.append(child)
        return child

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "link": self.link, "sub": menu_to_data(self.sub)}


def get_page_menu(username: str, role: str) -> list[MenuItem]:
    """The menu shown to a user with the given role."""
    return [MenuItem("Home", "/Default.aspx")]


def menu_to_data(menu: Iterable[MenuItem]) -> list[dict[str, Any]]:
    """The template data form of a menu."""
    return [item.to_dict() for item in menu]


def _git(*args: str) -> str:
    result = subprocess.run(["git", *args], capture_output=True, check=True)
    return result.stdout.decode("utf-8")


def git_commit_info() -> str:
    """Short hash of the current commit, or an empty string if git cannot tell."""
    try:
        commit = _git("rev-parse", "--short=9", "HEAD")
        _git("log", "-1", "--date=short", "--pretty=format:%cd")
    except (OSError, subprocess.SubprocessError, UnicodeDecodeError):
        return ""
    return commit.rstrip()


@functools.lru_cache(maxsize=1)
def _cached_commit_info() -> str:
    return git_commit_info()


def get_page_data(page_title: str, remote_addr: Optional[str] = None) -> dict[str, Any]:
    """The values every page template receives."""
    return {
        "page_title": page_title,
        "user_ip_address": remote_addr or "IP unknown",
        "backend_type": BACKEND_TYPE,
        "git_commit_info": _cached_commit_info(),
        "menu": menu_to_data(get_page_menu("", "")),
    }


def template_path(name: str) -> Path:
    """Where the template called ``name`` lives."""
    return TEMPLATE_DIR / f"{name}{TEMPLATE_SUFFIX}"


def load_template(name: str) -> str:
    """Read a template and check that its sections are balanced."""
    text = template_path(name).read_text(encoding="utf-8")
    open_sections: list[str] = []
    for match in _SECTION_TAG.finditer(text):
        kind, section = match.groups()
        if kind in "#^":
            open_sections.append(section)
        elif not open_sections:
            raise TemplateError(f"{name}: unopened section {section!r}")
        elif open_sections[-1] != section:
            raise TemplateError(
                f"{name}: section {open_sections[-1]!r} closed by {section!r}"
            )
        else:
            open_sections.pop()
    if open_sections:
        raise TemplateError(f"{name}: unclosed section {open_sections[-1]!r}")
    return text