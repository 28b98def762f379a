"""
Workspace markdown files (SOUL.md, USER.md, MEMORY.md, ...).

Only bare ``*.md`` names directly inside the workspace directory are
reachable. Names are validated before any filesystem access.
"""
from pathlib import Path
from typing import Optional

from .schema import InvalidRequest


def validate_file_name(name: str) -> bool:
    """Bare .md file name, no directory parts, no traversal."""
    return bool(
        name
        and name.endswith(".md")
        and ".." not in name
        and "/" not in name
        and "\\" not in name
    )


class Workspace:
    """Read/write access to the agent workspace directory."""

    def __init__(self, workspace_dir: str):
        self.root = Path(workspace_dir)

    def _path(self, name: str) -> Path:
        if not validate_file_name(name):
            raise InvalidRequest("Invalid file name")
        return self.root / name

    def read(self, name: str) -> Optional[str]:
        """File content, or None if the file does not exist."""
        path = self._path(name)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def write(self, name: str, content: str) -> None:
        path = self._path(name)
        if not isinstance(content, str):
            raise InvalidRequest("content must be a string")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
