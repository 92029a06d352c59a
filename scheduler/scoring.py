"""
Heuristic Scoring Engine for resource allocation.

This module determines the 'Quality' of an available candidate.
Unlike the availability filter (binary Yes/No), this provides a gradient
(0.0 - 1.0 per signal) used only for ranking, never for correctness.
"""

from datetime import datetime
from typing import Optional

from models import Location, Resource
from .config import ScoringWeights


class ResourceScorer:
    """
    Ranks candidates on proximity, maintenance recency, current load and
    (for personnel) whether their expertise covers the event category.
    The final score is a weighted sum; weights come from configuration.
    """

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        proximity_horizon_km: float = 50.0,
        maintenance_horizon_days: float = 180.0,
        load_horizon: int = 10
    ):
        self.weights = weights or ScoringWeights()
        self.proximity_horizon_km = proximity_horizon_km
        self.maintenance_horizon_days = maintenance_horizon_days
        self.load_horizon = load_horizon

    def calculate_score(
        self,
        resource: Resource,
        location: Optional[Location],
        now: datetime,
        event_category: Optional[str] = None
    ) -> float:
        """
        Master scoring function. Returns the weighted sum of the signals.
        """
        w = self.weights
        return (
            w.proximity_weight * self._score_proximity(resource, location)
            + w.maintenance_weight * self._score_maintenance(resource, now)
            + w.load_weight * self._score_load(resource, now)
            + w.expertise_weight * self._score_expertise(resource, event_category)
        )

    def explain(
        self,
        resource: Resource,
        location: Optional[Location],
        now: datetime,
        event_category: Optional[str] = None
    ) -> str:
        """Human-readable breakdown, used as the 'reason' of a suggestion."""
        parts = []
        distance = resource.location.distance_km(location) if resource.location else None
        if distance is not None:
            parts.append(f"{distance:.1f} km away")
        if resource.last_maintenance_at:
            days = (now - resource.last_maintenance_at).days
            parts.append(f"serviced {days} days ago")
        parts.append(f"{len(resource.future_bookings(now))} upcoming bookings")
        if self._score_expertise(resource, event_category):
            parts.append(f"covers {event_category}")
        return ", ".join(parts)

    def _score_proximity(self, resource: Resource, location: Optional[Location]) -> float:
        """
        Linear decay: 1.0 on site, 0.0 at the horizon or beyond.
        Unknown positions score neutral (0.5) so they neither win nor lose by default.
        """
        if resource.location is None:
            return 0.5
        distance = resource.location.distance_km(location)
        if distance is None:
            return 0.5
        return max(0.0, 1.0 - distance / self.proximity_horizon_km)

    def _score_maintenance(self, resource: Resource, now: datetime) -> float:
        """
        Recently serviced kit is preferred. Never serviced scores 0.
        """
        if resource.last_maintenance_at is None:
            return 0.0
        age_days = max(0.0, (now - resource.last_maintenance_at).total_seconds() / 86400)
        return max(0.0, 1.0 - age_days / self.maintenance_horizon_days)

    def _score_load(self, resource: Resource, now: datetime) -> float:
        """
        Fewer existing future bookings is better, to spread work across the pool.
        """
        load = len(resource.future_bookings(now))
        return max(0.0, 1.0 - load / self.load_horizon)

    @staticmethod
    def _score_expertise(resource: Resource, event_category: Optional[str]) -> float:
        if not event_category or not resource.expertise:
            return 0.0
        return 1.0 if event_category.lower() in {e.lower() for e in resource.expertise} else 0.0
