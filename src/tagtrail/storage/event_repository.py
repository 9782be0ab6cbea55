"""
Repository for tags and tracked events

Uses SQLAlchemy Core inserts so a row can carry any subset of a table's
columns: the schema fallback retries the same table with core columns only.
"""

from typing import Any, Dict, Optional, Union

from sqlalchemy import Table, and_, func as sql_func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from tagtrail.storage.models import LinkClick, Tag, VideoEvent

TableLike = Union[Table, type]


def _as_table(table: TableLike) -> Table:
    return table.__table__ if hasattr(table, "__table__") else table


class EventRepository:
    """Repository for tags and tracked events"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_active_tag(self, tag_id: str) -> Optional[Tag]:
        """
        Get an active tag by id
        """
        stmt = select(Tag).filter(
            and_(
                Tag.id == tag_id,
                Tag.is_active.is_(True),
            )
        )

        result = await self.session.execute(stmt)

        return result.scalar_one_or_none()

    async def insert(self, table: TableLike, row: Dict[str, Any]) -> Any:
        """
        Insert one row and commit

        Rolls the session back and re-raises on failure, leaving the session
        usable for a retry.

        Returns:
            Primary key of the inserted row
        """
        stmt = insert(_as_table(table)).values(**row)

        try:
            result = await self.session.execute(stmt)
            primary_key = result.inserted_primary_key
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        return primary_key[0] if primary_key else None

    async def count_matching(self, table: TableLike, *criteria) -> int:
        """
        Count rows of a table matching all criteria
        """
        stmt = select(sql_func.count()).select_from(_as_table(table))
        if criteria:
            stmt = stmt.where(and_(*criteria))

        result = await self.session.execute(stmt)

        return int(result.scalar_one())

    async def link_click_stats(self, tag_id: str) -> Dict[str, Any]:
        """
        Click counts per link for a tag, most clicked first
        """
        count_col = sql_func.count(LinkClick.id).label("clicks")
        stmt = (
            select(LinkClick.link_url, LinkClick.link_label, LinkClick.link_icon, count_col)
            .where(LinkClick.tag_id == tag_id)
            .group_by(LinkClick.link_url, LinkClick.link_label, LinkClick.link_icon)
            .order_by(count_col.desc())
        )

        result = await self.session.execute(stmt)
        rows = result.all()

        total = sum(row.clicks for row in rows)
        links = [
            {
                "linkUrl": row.link_url,
                "linkLabel": row.link_label,
                "linkIcon": row.link_icon,
                "clicks": row.clicks,
                "percent": round(row.clicks / total * 100) if total > 0 else 0,
            }
            for row in rows
        ]
        return {"tagId": tag_id, "total": total, "links": links}

    async def video_event_stats(self, tag_id: str) -> Dict[str, Any]:
        """
        Playback milestone counts and watch-time aggregates for a tag
        """
        counts_stmt = (
            select(VideoEvent.event, sql_func.count(VideoEvent.id))
            .where(VideoEvent.tag_id == tag_id)
            .group_by(VideoEvent.event)
        )
        counts_result = await self.session.execute(counts_stmt)
        events = {event: count for event, count in counts_result.all()}

        watch_stmt = select(
            sql_func.avg(VideoEvent.watch_time),
            sql_func.max(VideoEvent.watch_time),
        ).where(
            and_(
                VideoEvent.tag_id == tag_id,
                VideoEvent.watch_time.isnot(None),
            )
        )
        watch_result = await self.session.execute(watch_stmt)
        avg_watch, max_watch = watch_result.one()

        return {
            "tagId": tag_id,
            "plays": events.get("play", 0),
            "pauses": events.get("pause", 0),
            "completions": events.get("ended", 0),
            "progress25": events.get("progress_25", 0),
            "progress50": events.get("progress_50", 0),
            "progress75": events.get("progress_75", 0),
            "progress100": events.get("progress_100", 0),
            "avgWatchTime": round(avg_watch) if avg_watch else None,
            "maxWatchTime": round(max_watch) if max_watch else None,
        }
