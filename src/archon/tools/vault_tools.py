"""
Vault tools -- read, write, search, and list Markdown notes under a root directory.

Every operation is confined to the vault root (no "..", no absolute escapes)
and to the caller's folder scope. write_note is the only dangerous tool and
is refused outright in read-only contexts.

The handlers are synchronous filesystem code; ToolExecutor runs them off
the event loop.
"""

import logging
import re
from pathlib import Path
from typing import Any

from ..errors import ToolExecutionError, ToolPermissionError, ToolValidationError
from .types import (
    CATEGORY_SEARCH,
    CATEGORY_VAULT,
    TOOL_ERROR_NOTE_NOT_FOUND,
    ToolDefinition,
    ToolExecutionContext,
    ToolParameter,
)

logger = logging.getLogger(__name__)

NOTE_SUFFIX = ".md"
EXCERPT_BEFORE = 100
EXCERPT_AFTER = 200
DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 100
TAG_PATTERN = re.compile(r"(?<![\w#])#([A-Za-z][\w/-]*)")


def extract_tags(content: str) -> list[str]:
    """Inline #tags, in order of first appearance."""
    seen: dict[str, None] = {}
    for match in TAG_PATTERN.finditer(content):
        seen.setdefault(f"#{match.group(1)}", None)
    return list(seen)


def in_folder_scope(relative_path: str, folders: list[str]) -> bool:
    """True when the path is inside one of the folders (empty list = unrestricted)."""
    if not folders:
        return True
    for folder in folders:
        folder = folder.strip("/")
        if not folder or relative_path == folder or relative_path.startswith(folder + "/"):
            return True
    return False


class VaultTools:
    """Note operations over a directory of Markdown files."""

    def __init__(self, root: Path):
        self._root = root.resolve()

    @property
    def root(self) -> Path:
        return self._root

    # -------------------------------------------------------------------------
    # Definitions
    # -------------------------------------------------------------------------

    @staticmethod
    def definitions() -> list[ToolDefinition]:
        return [
            ToolDefinition(
                name="read_note",
                description="Read the full content of a note by its path. Returns content, tags, size and modification time.",
                category=CATEGORY_VAULT,
                parameters=[
                    ToolParameter("path", "Path to the note relative to the vault root (.md optional)", required=True),
                ],
                returns="Note content and metadata",
                examples=['read_note(path="Projects/Roadmap.md")'],
            ),
            ToolDefinition(
                name="write_note",
                description="Create a new note or overwrite/append to an existing one.",
                category=CATEGORY_VAULT,
                parameters=[
                    ToolParameter("path", "Path of the note to write (.md optional)", required=True),
                    ToolParameter("content", "Markdown content to write", required=True),
                    ToolParameter("append", "Append to the existing note instead of replacing it", type="boolean", default=False),
                ],
                returns="The written path and whether it was created, updated or appended",
                examples=['write_note(path="Inbox/Idea.md", content="# Idea")'],
                dangerous=True,
            ),
            ToolDefinition(
                name="search_notes",
                description="Search notes by text, folder and tags. Returns matching notes with excerpts, newest first.",
                category=CATEGORY_SEARCH,
                parameters=[
                    ToolParameter("query", "Case-insensitive text to look for"),
                    ToolParameter("folder", "Only search inside this folder"),
                    ToolParameter("tags", "Notes must carry all of these tags", type="array", items_type="string"),
                    ToolParameter("limit", "Maximum number of results (default 10)", type="integer", default=DEFAULT_SEARCH_LIMIT),
                ],
                returns="Matching notes with path, excerpt, tags and modification time",
                examples=['search_notes(query="budget", folder="Finance")'],
            ),
            ToolDefinition(
                name="list_notes",
                description="List the notes in a folder.",
                category=CATEGORY_VAULT,
                parameters=[
                    ToolParameter("folder", "Folder to list (default: vault root)"),
                    ToolParameter("recursive", "Include sub-folders", type="boolean", default=False),
                ],
                returns="Note paths with size and modification time",
                examples=['list_notes(folder="Projects", recursive=true)'],
            ),
        ]

    @staticmethod
    def tool_names() -> set[str]:
        return {d.name for d in VaultTools.definitions()}

    def handle(
        self, tool_name: str, parameters: dict[str, Any], context: ToolExecutionContext
    ) -> dict[str, Any]:
        handlers = {
            "read_note": self.read_note,
            "write_note": self.write_note,
            "search_notes": self.search_notes,
            "list_notes": self.list_notes,
        }
        return handlers[tool_name](parameters, context)

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def read_note(self, parameters: dict[str, Any], context: ToolExecutionContext) -> dict[str, Any]:
        path = self._resolve(parameters["path"], "read_note")
        if not path.is_file() and path.suffix != NOTE_SUFFIX:
            path = self._resolve(f"{parameters['path']}{NOTE_SUFFIX}", "read_note")

        # scope first, so a scoped agent learns nothing about notes outside it
        relative = path.relative_to(self._root).as_posix()
        if not in_folder_scope(relative, context.restrict_to_folders):
            raise ToolPermissionError("Access denied: note is outside allowed folders", "read_note")
        if not path.is_file():
            raise ToolExecutionError(
                f"Note not found: {parameters['path']}", TOOL_ERROR_NOTE_NOT_FOUND, "read_note"
            )

        content = path.read_text(encoding="utf-8", errors="replace")
        stat = path.stat()
        return {
            "path": relative,
            "filename": path.name,
            "content": content,
            "tags": extract_tags(content),
            "modified": stat.st_mtime,
            "size": stat.st_size,
        }

    def write_note(self, parameters: dict[str, Any], context: ToolExecutionContext) -> dict[str, Any]:
        if context.read_only:
            raise ToolPermissionError("Write operations are not allowed in read-only mode", "write_note")

        path = self._resolve(parameters["path"], "write_note")
        if path.suffix != NOTE_SUFFIX:
            path = self._resolve(f"{parameters['path']}{NOTE_SUFFIX}", "write_note")

        relative = path.relative_to(self._root).as_posix()
        if not in_folder_scope(relative, context.restrict_to_folders):
            raise ToolPermissionError("Access denied: cannot write outside allowed folders", "write_note")

        content = str(parameters["content"])
        if path.exists():
            if parameters.get("append"):
                existing = path.read_text(encoding="utf-8")
                path.write_text(f"{existing}\n\n{content}", encoding="utf-8")
                action = "appended"
            else:
                path.write_text(content, encoding="utf-8")
                action = "updated"
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
            action = "created"

        logger.info(f"[VaultTools] {context.agent_name} {action} {relative}")
        return {"path": relative, "action": action}

    def search_notes(self, parameters: dict[str, Any], context: ToolExecutionContext) -> dict[str, Any]:
        query = (parameters.get("query") or "").lower()
        folder = (parameters.get("folder") or "").strip("/")
        wanted_tags = [t.lower() if t.startswith("#") else f"#{t.lower()}" for t in parameters.get("tags") or []]
        limit = max(1, min(int(parameters.get("limit") or DEFAULT_SEARCH_LIMIT), MAX_SEARCH_LIMIT))

        results = []
        for path in self._root.rglob(f"*{NOTE_SUFFIX}"):
            relative = self._relative(path)
            if relative is None:
                continue
            if folder and not in_folder_scope(relative, [folder]):
                continue
            if not in_folder_scope(relative, context.restrict_to_folders):
                continue

            try:
                content = path.read_text(encoding="utf-8")
                modified = path.stat().st_mtime
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"[VaultTools] Skipping unreadable note {relative}: {e}")
                continue
            tags = extract_tags(content)
            if wanted_tags and not all(t in [x.lower() for x in tags] for t in wanted_tags):
                continue

            if query:
                index = content.lower().find(query)
                if index < 0:
                    continue
                excerpt = content[max(0, index - EXCERPT_BEFORE) : index + EXCERPT_AFTER]
            else:
                excerpt = content[:EXCERPT_AFTER]

            results.append({
                "path": relative,
                "filename": path.name,
                "excerpt": excerpt,
                "tags": tags,
                "modified": modified,
            })

        results.sort(key=lambda r: r["modified"], reverse=True)
        return {
            "results": results[:limit],
            "total_found": len(results),
            "returned": min(len(results), limit),
        }

    def list_notes(self, parameters: dict[str, Any], context: ToolExecutionContext) -> dict[str, Any]:
        folder = (parameters.get("folder") or "").strip("/")
        if folder and not in_folder_scope(folder, context.restrict_to_folders):
            raise ToolPermissionError("Access denied: folder is outside allowed folders", "list_notes")

        base = self._resolve(folder, "list_notes") if folder else self._root
        if not base.is_dir():
            raise ToolValidationError(f"Folder not found: {folder}", "list_notes")

        pattern = f"**/*{NOTE_SUFFIX}" if parameters.get("recursive") else f"*{NOTE_SUFFIX}"
        notes = []
        for path in sorted(base.glob(pattern)):
            relative = self._relative(path)
            if relative is None or not in_folder_scope(relative, context.restrict_to_folders):
                continue
            try:
                stat = path.stat()
            except OSError as e:
                logger.warning(f"[VaultTools] Skipping {relative}: {e}")
                continue
            notes.append({"path": relative, "filename": path.name, "size": stat.st_size, "modified": stat.st_mtime})

        return {"folder": folder or "/", "notes": notes, "count": len(notes)}

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    def _resolve(self, raw: str, tool_name: str) -> Path:
        cleaned = str(raw).strip().replace("\\", "/").lstrip("/")
        if not cleaned:
            raise ToolValidationError("path cannot be empty", tool_name)
        candidate = (self._root / cleaned).resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise ToolPermissionError(f"Path escapes the vault: {raw}", tool_name)
        return candidate

    def _relative(self, path: Path) -> str | None:
        """Vault-relative posix path, or None for files (symlinks) resolving outside the vault."""
        try:
            return path.resolve().relative_to(self._root).as_posix()
        except (OSError, ValueError):
            logger.warning(f"[VaultTools] Skipping {path}: resolves outside the vault")
            return None
