"""User store — the reminder sweep's view of the users table.

Learn: Each call opens its own session (same pattern as the merge worker
outside FastAPI). update_sent_reminder runs in a single transaction, so
a batch is marked all-or-nothing.
"""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from findme.db.models import User


class UserStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def fetch_trial_ending_users(
        self, window_start: datetime, window_end: datetime
    ) -> list[User]:
        """Users whose trial ends in [window_start, window_end], not yet reminded."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(User)
                .where(
                    User.free_trial >= window_start,
                    User.free_trial <= window_end,
                    User.reminder_sent.is_(False),
                )
                .order_by(User.free_trial)
            )
            return list(result.scalars().all())

    async def update_sent_reminder(self, user_ids: list[str]) -> None:
        if not user_ids:
            return
        async with self.session_factory() as db:
            async with db.begin():
                await db.execute(
                    update(User)
                    .where(User.id.in_(user_ids))
                    .values(reminder_sent=True)
                )
