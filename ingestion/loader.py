"""Course corpus loader: JSON lesson list or a directory of lesson files."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from core.errors import InvalidInput
from core.models import Document

logger = logging.getLogger(__name__)

LESSON_SUFFIXES = (".md", ".txt")


def load_corpus(path: str | Path) -> list[Document]:
    """Load every lesson under `path`.

    A `.json` file must hold a list of `{id, title, moduleId, content}`
    objects. A directory is scanned recursively for .md/.txt lessons.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Corpus not found: {path}")

    if path.is_dir():
        documents = [
            load_lesson_file(p, root=path)
            for p in sorted(path.rglob("*"))
            if p.is_file() and p.suffix.lower() in LESSON_SUFFIXES
        ]
    else:
        documents = _load_json_corpus(path)

    logger.info("Loaded %d documents from %s", len(documents), path)
    return documents


def _load_json_corpus(path: Path) -> list[Document]:
    with open(path, "r", encoding="utf-8") as f:
        try:
            entries = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidInput(f"Malformed corpus file {path}: {e}") from e

    if not isinstance(entries, list):
        raise InvalidInput(f"Corpus file {path} must contain a list of lessons")

    documents = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise InvalidInput(f"Corpus entry {i} is not an object")
        try:
            documents.append(
                Document(
                    id=entry["id"],
                    title=entry["title"],
                    group_id=entry.get("moduleId", ""),
                    text=entry.get("content", ""),
                )
            )
        except (KeyError, ValidationError) as e:
            raise InvalidInput(f"Corpus entry {i} is malformed: {e}") from e
    return documents


def load_lesson_file(file_path: str | Path, root: Path | None = None) -> Document:
    """Load one .md/.txt lesson. Title is the first '# ' heading, else the stem."""
    path = Path(file_path)
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()

    title = path.stem.replace("-", " ").replace("_", " ").title()
    for line in text.splitlines():
        if line.startswith("# "):
            title = line[2:].strip()
            break

    group_id = ""
    if root is not None and path.parent != root:
        group_id = path.parent.name

    return Document(id=path.stem, title=title, group_id=group_id, text=text)
