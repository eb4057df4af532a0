"""Persistence layer for indexed workspaces.

Each project gets a directory under ``~/.designsync/memory/<name>`` holding a
SQLite database with two tables:

- ``files``: one row per indexed file (path, language, imports, symbols)
- ``dependencies``: resolved file-to-file import edges

The database is the ground-truth dependency graph that commits diff against.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import MEMORY_DIR, SKIP_DIRS, STATE_FILE, SUPPORTED_EXTENSIONS, ensure_base_dirs
from .graph_normalizer import normalize_path
from .models import CanonicalFile, DependencyEdge, DependencyGraph
from .parser import SourceFileParser, resolve_import

logger = logging.getLogger(__name__)


class ProjectManager:
    """Manage project memory directories and active project state."""

    def __init__(self) -> None:
        ensure_base_dirs()

    def list_projects(self) -> List[str]:
        if not MEMORY_DIR.exists():
            return []
        return sorted([p.name for p in MEMORY_DIR.iterdir() if p.is_dir()])

    def project_dir(self, project_name: str) -> Path:
        return MEMORY_DIR / project_name

    def create_or_get_project(self, project_name: str) -> Path:
        path = self.project_dir(project_name)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def set_current_project(self, project_name: str) -> None:
        ensure_base_dirs()
        STATE_FILE.write_text(
            json.dumps({"current_project": project_name}, indent=2),
            encoding="utf-8",
        )

    def get_current_project(self) -> Optional[str]:
        if not STATE_FILE.exists():
            return None
        try:
            payload = json.loads(STATE_FILE.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None
        return payload.get("current_project")


class SourceIndex:
    """SQLite-backed file index and dependency graph for one workspace."""

    def __init__(self, project_dir: Path) -> None:
        self.project_dir = Path(project_dir)
        self.project_dir.mkdir(parents=True, exist_ok=True)
        self.db_path = self.project_dir / "index.db"
        self.meta_path = self.project_dir / "project.json"
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        self.parser = SourceFileParser()
        self._init_schema()

    def close(self) -> None:
        self.conn.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.execute("""
            CREATE TABLE IF NOT EXISTS files (
                path     TEXT PRIMARY KEY,
                label    TEXT NOT NULL,
                language TEXT NOT NULL,
                imports  TEXT NOT NULL,
                symbols  TEXT NOT NULL
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS dependencies (
                src TEXT NOT NULL,
                dst TEXT NOT NULL,
                PRIMARY KEY (src, dst)
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_dependencies_dst ON dependencies(dst)")
        self.conn.commit()

    # ------------------------------------------------------------------
    # Clear / metadata
    # ------------------------------------------------------------------

    def clear(self) -> None:
        cur = self.conn.cursor()
        cur.execute("DELETE FROM dependencies")
        cur.execute("DELETE FROM files")
        self.conn.commit()

    def set_metadata(self, payload: Dict[str, Any]) -> None:
        self.meta_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def get_metadata(self) -> Dict[str, Any]:
        if not self.meta_path.exists():
            return {}
        try:
            return json.loads(self.meta_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    @staticmethod
    def _iter_source_files(root: Path):
        for path in sorted(root.rglob("*")):
            if not path.is_file() or path.suffix.lower() not in SUPPORTED_EXTENSIONS:
                continue
            if any(part in SKIP_DIRS for part in path.relative_to(root).parts):
                continue
            yield path

    def _store_file(self, file: CanonicalFile) -> None:
        self.conn.execute(
            """
            INSERT OR REPLACE INTO files (path, label, language, imports, symbols)
            VALUES (?, ?, ?, ?, ?)
            """,
            (file.full_path, file.label, file.language, json.dumps(file.imports), json.dumps(file.symbols)),
        )

    def _store_dependencies(self, file: CanonicalFile, known_paths: set) -> int:
        self.conn.execute("DELETE FROM dependencies WHERE src = ?", (file.full_path,))
        targets = []
        for specifier in file.imports:
            target = resolve_import(specifier, file.full_path, known_paths, file.language)
            if target and target != file.full_path:
                targets.append(target)
        self.conn.executemany(
            "INSERT OR IGNORE INTO dependencies (src, dst) VALUES (?, ?)",
            [(file.full_path, target) for target in dict.fromkeys(targets)],
        )
        return len(targets)

    def index_project(self, root: Path) -> Dict[str, int]:
        """Rebuild the index from every supported file under ``root``."""
        root = Path(root).resolve()
        self.clear()

        parsed: List[CanonicalFile] = []
        for path in self._iter_source_files(root):
            rel = path.relative_to(root).as_posix()
            try:
                source = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Skipping %s: %s", rel, exc)
                continue
            parsed.append(self.parser.parse_file(rel, source))

        known_paths = {file.full_path for file in parsed}
        edge_count = 0
        for file in parsed:
            self._store_file(file)
        for file in parsed:
            edge_count += self._store_dependencies(file, known_paths)
        self.conn.commit()

        self.set_metadata({"project_root": str(root), "file_count": len(parsed)})
        logger.info("Indexed %d files, %d dependency edges from %s", len(parsed), edge_count, root)
        return {"files": len(parsed), "edges": self.edge_count()}

    def update_file(self, path: str, content: str) -> None:
        """Re-parse one file and replace its outgoing dependency edges."""
        file = self.parser.parse_file(normalize_path(path), content)
        self._store_file(file)
        self._store_dependencies(file, self.known_paths() | {file.full_path})
        self.conn.commit()
        logger.debug("Index updated for %s (%d imports)", file.full_path, len(file.imports))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def known_paths(self) -> set:
        return {row["path"] for row in self.conn.execute("SELECT path FROM files")}

    def file_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]

    def edge_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM dependencies").fetchone()[0]

    def get_dependency_graph(self) -> DependencyGraph:
        files = [
            CanonicalFile(
                full_path=row["path"],
                label=row["label"],
                language=row["language"],
                imports=json.loads(row["imports"]),
                symbols=json.loads(row["symbols"]),
            )
            for row in self.conn.execute("SELECT * FROM files ORDER BY path")
        ]
        edges = [
            DependencyEdge(row["src"], row["dst"])
            for row in self.conn.execute("SELECT src, dst FROM dependencies ORDER BY src, dst")
        ]
        return DependencyGraph(files=files, edges=edges)
