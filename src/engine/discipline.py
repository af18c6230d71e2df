"""
Disciplinary points: penalties for forfeits that can suspend a player.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from engine.errors import ValidationError
from engine.models import DisciplinaryPoints, ForfeitType, Registration
from engine.repository import DisciplinaryRepository

logger = logging.getLogger(__name__)

FORFEIT_POINTS = {
    ForfeitType.EXCUSED: 1,
    ForfeitType.ABANDON: 2,
    ForfeitType.NOT_EXCUSED: 3,
    ForfeitType.NO_SHOW: 4,
}


class DisciplinaryTracker:
    def __init__(self, repo: DisciplinaryRepository, suspension_threshold: int = 12,
                 validity_days: int = 365):
        self.repo = repo
        self.suspension_threshold = suspension_threshold
        self.validity = timedelta(days=validity_days)

    def add_points(self, player_ids, reason: str, value: int, tournament_id: str = None,
                   registration_id: str = None, now: datetime = None,
                   entry_id: str = None) -> DisciplinaryPoints:
        if isinstance(player_ids, str):
            player_ids = [player_ids]
        if not player_ids:
            raise ValidationError('At least one player is required')
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError('Disciplinary points must be a positive integer')
        now = now or datetime.now()
        entry = DisciplinaryPoints(player_ids, value, reason, tournament_id=tournament_id,
                                   registration_id=registration_id, incident_date=now,
                                   expires_at=now + self.validity, id=entry_id)
        self.repo.add(entry)
        logger.info(f'{value} disciplinary point(s) for {", ".join(entry.player_ids)}: {reason}')
        return entry

    def record_forfeit(self, registration: Registration, forfeit_type: ForfeitType,
                       now: datetime = None, entry_id: str = None) -> DisciplinaryPoints:
        """
        One entry per forfeit, shared by both players of the pair. Adding an
        entry with an existing `entry_id` replaces it.
        """
        forfeit_type = ForfeitType(forfeit_type)
        if forfeit_type not in FORFEIT_POINTS:
            raise ValidationError(f'{forfeit_type.value} is not a forfeit')
        return self.add_points(list(registration.player_ids), f'forfeit_{forfeit_type.value}',
                               FORFEIT_POINTS[forfeit_type],
                               tournament_id=registration.tournament_id,
                               registration_id=registration.id, now=now, entry_id=entry_id)

    def active_points(self, player_id: str, now: datetime = None) -> int:
        now = now or datetime.now()
        return sum(e.points for e in self.repo.list(player_id) if e.counts_at(now))

    def history(self, player_id: str):
        return sorted(self.repo.list(player_id), key=lambda e: e.incident_date, reverse=True)

    def expire(self, now: datetime = None) -> int:
        """Deactivate every expired entry; returns how many were flipped."""
        now = now or datetime.now()
        expired = [e for e in self.repo.list() if e.is_active and e.is_expired(now)]
        for entry in expired:
            entry.is_active = False
        if expired:
            self.repo.save_all(expired)
            logger.info(f'Expired {len(expired)} disciplinary entries')
        return len(expired)

    def is_suspended(self, player_id: str, now: Optional[datetime] = None) -> bool:
        return self.active_points(player_id, now) >= self.suspension_threshold
