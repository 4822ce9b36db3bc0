# listing_scout/pipeline/batches.py
"""
Numbered batch files shared by every export/import pair.

Export writes ``batch_001.json``, ``batch_002.json``, ... into a directory
that is emptied first, so it always holds one current snapshot. The external
transform step writes ``batch_001_result.json`` next to each input; import
finds result files by that suffix alone.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar, Union

from listing_scout.errors import MissingInputError
from listing_scout.logger import logger

T = TypeVar("T")

RESULT_SUFFIX = "_result.json"

BuildBatch = Callable[[Sequence[T], int, int], Dict[str, Any]]


@dataclass
class ImportSummary:
    """Outcome counts of one import run.

    Create-or-skip imports use ``created``/``skipped``/``failed``; upsert
    imports count successes as ``ok``.
    """

    created: int = 0
    skipped: int = 0
    failed: int = 0
    ok: int = 0
    dry_run: bool = False
    error: Optional[str] = None

    def record(self, outcome: str) -> None:
        if outcome not in ("created", "skipped", "failed", "ok"):
            raise ValueError(f"Unknown outcome: {outcome}")
        setattr(self, outcome, getattr(self, outcome) + 1)

    def merge(self, other: "ImportSummary") -> None:
        self.created += other.created
        self.skipped += other.skipped
        self.failed += other.failed
        self.ok += other.ok

    @property
    def total(self) -> int:
        return self.created + self.skipped + self.failed + self.ok

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
            "ok": self.ok,
            "dry_run": self.dry_run,
            "error": self.error,
        }


def chunk(items: Sequence[T], size: int) -> List[Sequence[T]]:
    if size < 1:
        raise ValueError("batch size must be >= 1")
    return [items[i : i + size] for i in range(0, len(items), size)]


def batch_filename(number: int) -> str:
    return f"batch_{number:03d}.json"


def clear_directory(directory: Path) -> None:
    """Create *directory* if needed and remove the files it holds."""
    directory.mkdir(parents=True, exist_ok=True)
    for entry in directory.iterdir():
        if entry.is_file():
            entry.unlink()


def write_batches(
    directory: Union[str, Path],
    items: Sequence[T],
    batch_size: int,
    build: BuildBatch,
) -> List[Path]:
    """Write *items* as numbered batch files; ``build(chunk, number, total)`` shapes each file."""
    directory = Path(directory)
    clear_directory(directory)
    chunks = chunk(items, batch_size)
    written: List[Path] = []
    for number, part in enumerate(chunks, start=1):
        path = directory / batch_filename(number)
        data = build(part, number, len(chunks))
        path.write_text(json.dumps(data, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
        logger.info("Wrote %s (%d items)", path, len(part))
        written.append(path)
    return written


def resolve_result_files(
    directory: Union[str, Path, None] = None,
    file: Union[str, Path, None] = None,
) -> List[Path]:
    """Result files to import: the single *file*, or every ``*_result.json`` in *directory*."""
    if file is not None:
        path = Path(file)
        if not path.is_file():
            raise MissingInputError(f"File not found: {path}")
        return [path]
    if directory is not None:
        path = Path(directory)
        if not path.is_dir():
            raise MissingInputError(f"Directory not found: {path}")
        files = sorted(p for p in path.iterdir() if p.name.endswith(RESULT_SUFFIX))
        if not files:
            raise MissingInputError(f"No *{RESULT_SUFFIX} files found in {path}")
        return files
    raise MissingInputError("Provide a result directory or file")


def read_result_file(path: Path) -> Optional[Dict[str, Any]]:
    """Parsed result file, or None when it is not a JSON object."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("Cannot read result file %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        logger.error("Result file %s does not hold a JSON object", path)
        return None
    return data


__all__ = [
    "ImportSummary",
    "RESULT_SUFFIX",
    "batch_filename",
    "chunk",
    "clear_directory",
    "read_result_file",
    "resolve_result_files",
    "write_batches",
]
