from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from typing import List, Optional
from app.models.trips.trip_member import TripMember


async def get_membership(db: AsyncSession, trip_id: int, user_id: int) -> Optional[TripMember]:
    result = await db.execute(select(TripMember).where(
        TripMember.trip_id == trip_id,
        TripMember.user_id == user_id
    ))
    return result.scalar_one_or_none()


async def get_trip_roster(db: AsyncSession, trip_id: int) -> List[TripMember]:
    """Members of a trip with their user rows, in join order."""
    result = await db.execute(
        select(TripMember)
        .where(TripMember.trip_id == trip_id)
        .options(selectinload(TripMember.user))
        .order_by(TripMember.joined_at, TripMember.id)
    )
    return result.scalars().all()
