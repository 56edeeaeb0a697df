from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, func

from leadwatch.models.db import CommentRecord, SourceSummary
from leadwatch.models.schemas import ClassifiedItem


async def create_comment(session: AsyncSession, item: ClassifiedItem) -> CommentRecord:
    record = CommentRecord(
        source=item.source,
        thread_id=item.thread_id,
        item_id=item.item_id,
        author=item.author,
        username=item.username,
        phone=item.phone,
        text=item.text,
        date=item.date,
        intent=item.intent.value,
        confidence=item.confidence,
        is_lead=item.is_lead,
        lead_score=item.lead_score,
        need_summary=item.need_summary,
        analyzed_at=item.analyzed_at,
    )
    session.add(record)
    await session.commit()
    await session.refresh(record)
    return record


async def get_comments_count(session: AsyncSession, leads_only: bool = False) -> int:
    query = select(func.count(CommentRecord.id))
    if leads_only:
        query = query.where(CommentRecord.is_lead == True)  # noqa: E712
    result = await session.execute(query)
    return result.scalar_one()


async def _get_or_create_summary(session: AsyncSession, source: str) -> SourceSummary:
    summary = await session.get(SourceSummary, source)
    if summary is None:
        summary = SourceSummary(source=source)
    return summary


async def increment_source_counters(session: AsyncSession, source: str, is_lead: bool) -> SourceSummary:
    summary = await _get_or_create_summary(session, source)
    summary.comments += 1
    if is_lead:
        summary.leads += 1
    summary.updated_at = datetime.now(timezone.utc)
    session.add(summary)
    await session.commit()
    await session.refresh(summary)
    return summary


async def set_source_capability(session: AsyncSession, source: str, has_comments: bool) -> SourceSummary:
    summary = await _get_or_create_summary(session, source)
    summary.has_comments = has_comments
    summary.updated_at = datetime.now(timezone.utc)
    session.add(summary)
    await session.commit()
    await session.refresh(summary)
    return summary


async def list_source_summaries(session: AsyncSession) -> list[SourceSummary]:
    result = await session.execute(select(SourceSummary).order_by(SourceSummary.source))
    return list(result.scalars().all())
