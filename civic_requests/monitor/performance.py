"""Per-official performance report built from verified citizen feedback."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from civic_requests.lifecycle.errors import NotFound
from civic_requests.lifecycle.store import ApplicationStore


@dataclass
class OfficialPerformance:
    official_id: str
    department: Optional[str]
    hierarchy_level: int
    average_rating: Optional[float]
    rated: int
    solved: int
    unsolved: int
    assigned_total: int
    current_workload: int

    def to_dict(self) -> dict:
        return {
            "official_id": self.official_id,
            "department": self.department,
            "hierarchy_level": self.hierarchy_level,
            "average_rating": self.average_rating,
            "rated": self.rated,
            "solved": self.solved,
            "unsolved": self.unsolved,
            "assigned_total": self.assigned_total,
            "current_workload": self.current_workload,
        }


def official_performance(store: ApplicationStore, official_id: str) -> OfficialPerformance:
    """
    Summarize an official's record.

    Only feedback confirmed through verification counts toward the rating.
    """
    official = store.get_official(official_id)
    if official is None:
        raise NotFound(f"Official {official_id} not found.")

    ratings = store.ratings_for_official(official_id, verified_only=True)
    average = round(sum(f.rating for f in ratings) / len(ratings), 2) if ratings else None
    solved = sum(1 for f in ratings if f.is_solved)

    return OfficialPerformance(
        official_id=official.id,
        department=official.department,
        hierarchy_level=official.hierarchy_level,
        average_rating=average,
        rated=len(ratings),
        solved=solved,
        unsolved=len(ratings) - solved,
        assigned_total=store.count_assigned(official_id),
        current_workload=store.workload(official_id),
    )
