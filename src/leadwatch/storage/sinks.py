from __future__ import annotations

import asyncio
import csv
import io
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadwatch.models.schemas import ClassifiedItem
from leadwatch.storage import repository

logger = structlog.get_logger()

REPORT_FILENAME = "sources.json"

CSV_COLUMNS = [
    "source",
    "thread_id",
    "item_id",
    "author",
    "username",
    "text",
    "date",
    "intent",
    "confidence",
    "is_lead",
    "lead_score",
    "need_summary",
    "analyzed_at",
]


class Sink(Protocol):
    async def append(self, item: ClassifiedItem) -> None: ...

    async def update_source_counters(self, source: str, is_lead: bool) -> None: ...

    async def notify_capability(self, source: str, has_comments: bool) -> None: ...

    async def write_report(self) -> None: ...


def _write_report_file(path: Path, sources: dict[str, dict]) -> None:
    report = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "sources": sources,
    }
    tmp = path.with_suffix(".json.tmp")
    tmp.write_text(json.dumps(report, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(path)


class SqlSink:
    """Stores comments and per-source summaries in the database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], data_dir: Path) -> None:
        self.session_factory = session_factory
        self.data_dir = Path(data_dir)
        # Capability checks and the storage task both rewrite sources.json
        self._report_lock = asyncio.Lock()

    async def append(self, item: ClassifiedItem) -> None:
        async with self.session_factory() as session:
            await repository.create_comment(session, item)

    async def update_source_counters(self, source: str, is_lead: bool) -> None:
        async with self.session_factory() as session:
            await repository.increment_source_counters(session, source, is_lead)

    async def notify_capability(self, source: str, has_comments: bool) -> None:
        async with self.session_factory() as session:
            await repository.set_source_capability(session, source, has_comments)

    async def write_report(self) -> None:
        async with self._report_lock:
            async with self.session_factory() as session:
                summaries = await repository.list_source_summaries(session)
            sources = {
                s.source: {"has_comments": s.has_comments, "comments": s.comments, "leads": s.leads}
                for s in summaries
            }
            self.data_dir.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(_write_report_file, self.data_dir / REPORT_FILENAME, sources)


class FileSink:
    """Appends comments to daily JSONL or CSV files."""

    def __init__(self, data_dir: Path, fmt: str = "jsonl") -> None:
        if fmt not in ("jsonl", "csv"):
            raise ValueError(f"Unknown storage format: {fmt}")
        self.data_dir = Path(data_dir)
        self.format = fmt
        self._sources: dict[str, dict] = {}
        self._report_lock = asyncio.Lock()
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, when: datetime | None = None) -> Path:
        date_str = (when or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
        return self.data_dir / f"comments_{date_str}.{self.format}"

    def _source(self, source: str) -> dict:
        return self._sources.setdefault(source, {"has_comments": None, "comments": 0, "leads": 0})

    async def append(self, item: ClassifiedItem) -> None:
        path = self.path_for()
        if self.format == "jsonl":
            line = item.model_dump_json() + "\n"
        else:
            line = _csv_line(item, header=not path.exists())
        await asyncio.to_thread(_append_text, path, line)

    async def update_source_counters(self, source: str, is_lead: bool) -> None:
        entry = self._source(source)
        entry["comments"] += 1
        if is_lead:
            entry["leads"] += 1

    async def notify_capability(self, source: str, has_comments: bool) -> None:
        self._source(source)["has_comments"] = has_comments

    async def write_report(self) -> None:
        async with self._report_lock:
            snapshot = {name: dict(entry) for name, entry in sorted(self._sources.items())}
            await asyncio.to_thread(_write_report_file, self.data_dir / REPORT_FILENAME, snapshot)


def _append_text(path: Path, text: str) -> None:
    with open(path, "a", encoding="utf-8", newline="") as f:
        f.write(text)


def _csv_line(item: ClassifiedItem, header: bool) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    if header:
        writer.writerow(CSV_COLUMNS)
    writer.writerow([
        item.source,
        item.thread_id,
        item.item_id,
        item.author,
        item.username or "",
        item.text,
        item.date.isoformat(),
        item.intent.value,
        f"{item.confidence:.2f}",
        int(item.is_lead),
        f"{item.lead_score:.2f}",
        item.need_summary,
        item.analyzed_at.isoformat(),
    ])
    return buf.getvalue()
