from app.db.helpers import fetch_all
from app.features.inbox_actions.domain.models import ChildProfile


class ChildProfileRepository:
    """Read access to child_profiles. Order is stable so token numbering is too."""

    @classmethod
    async def get_profiles(cls, user_id: str, active_only: bool = True) -> list[ChildProfile]:
        query = """
            SELECT real_name, year_group, school_name
            FROM child_profiles
            WHERE user_id = %s AND (is_active OR NOT %s)
            ORDER BY display_order, id
        """
        rows = await fetch_all(query, (user_id, active_only))
        return [
            ChildProfile(
                real_name=row["real_name"],
                year_group=row.get("year_group"),
                school_name=row.get("school_name"),
            )
            for row in rows
        ]
