"""Transition rule table loading, caching and lookup."""

from collections.abc import Iterable
from dataclasses import asdict, dataclass
from typing import Any
from uuid import uuid4

import structlog
from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from admission.core.redis_client import CacheManager
from admission.models.appointments import appointment_state_transitions
from admission.schemas.appointments import AppointmentStatus
from admission.schemas.users import UserRole

logger = structlog.get_logger()


@dataclass(frozen=True)
class TransitionRule:
    """One allowed status edge. ``from_status=None`` matches any current status."""

    from_status: AppointmentStatus | None
    to_status: AppointmentStatus
    requires_reason: bool = False
    role_required: UserRole | None = None

    @classmethod
    def from_mapping(cls, row: Any) -> "TransitionRule":
        """Build a rule from a table row or cached dict."""
        return cls(
            from_status=AppointmentStatus(row["from_status"]) if row["from_status"] else None,
            to_status=AppointmentStatus(row["to_status"]),
            requires_reason=bool(row["requires_reason"]),
            role_required=UserRole(row["role_required"]) if row["role_required"] else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the cache."""
        data = asdict(self)
        data["from_status"] = self.from_status.value if self.from_status else None
        data["to_status"] = self.to_status.value
        data["role_required"] = self.role_required.value if self.role_required else None
        return data


_S = AppointmentStatus

DEFAULT_TRANSITION_RULES: tuple[TransitionRule, ...] = (
    TransitionRule(_S.SCHEDULED, _S.CONFIRMED),
    TransitionRule(_S.SCHEDULED, _S.ARRIVED),
    TransitionRule(_S.SCHEDULED, _S.CANCELLED, requires_reason=True),
    TransitionRule(_S.SCHEDULED, _S.RESCHEDULED, requires_reason=True),
    TransitionRule(_S.SCHEDULED, _S.NO_SHOW),
    TransitionRule(_S.CONFIRMED, _S.ARRIVED),
    TransitionRule(_S.CONFIRMED, _S.CANCELLED, requires_reason=True),
    TransitionRule(_S.CONFIRMED, _S.RESCHEDULED, requires_reason=True),
    TransitionRule(_S.CONFIRMED, _S.NO_SHOW),
    TransitionRule(_S.RESCHEDULED, _S.CONFIRMED),
    TransitionRule(_S.RESCHEDULED, _S.ARRIVED),
    TransitionRule(_S.RESCHEDULED, _S.CANCELLED, requires_reason=True),
    TransitionRule(_S.RESCHEDULED, _S.NO_SHOW),
    TransitionRule(_S.ARRIVED, _S.COMPLETED, role_required=UserRole.DOCTOR),
)


class TransitionTable:
    """Immutable lookup over a set of transition rules."""

    def __init__(self, rules: Iterable[TransitionRule]):
        """Index rules by (from_status, to_status)."""
        self._rules: dict[tuple[AppointmentStatus | None, AppointmentStatus], TransitionRule] = {
            (rule.from_status, rule.to_status): rule for rule in rules
        }

    def __len__(self) -> int:
        return len(self._rules)

    @property
    def rules(self) -> list[TransitionRule]:
        """All rules, in insertion order."""
        return list(self._rules.values())

    def find(
        self,
        current: AppointmentStatus,
        target: AppointmentStatus,
    ) -> TransitionRule | None:
        """
        Find the rule allowing ``current -> target``.

        An exact edge wins over a wildcard edge to the same target.

        Args:
            current: Stored status of the appointment
            target: Requested status

        Returns:
            Matching rule or None if the transition is illegal
        """
        return self._rules.get((current, target)) or self._rules.get((None, target))

    def allowed_from(self, current: AppointmentStatus) -> list[TransitionRule]:
        """Rules usable from ``current``, exact edges first."""
        exact = [r for r in self._rules.values() if r.from_status == current]
        targets = {r.to_status for r in exact}
        wildcard = [
            r for r in self._rules.values() if r.from_status is None and r.to_status not in targets
        ]
        return exact + wildcard


class TransitionRuleRegistry:
    """
    Serves the transition table from a snapshot.

    Without a cache manager the snapshot lives in process memory until
    ``invalidate()``. With one, Redis holds the shared snapshot tagged with a
    generation token. Every lookup reads that entry and rebuilds the local
    table when the generation differs, so an invalidation issued by any
    worker reaches all of them on their next lookup. When the entry is
    missing the table is reloaded from the database and republished.
    """

    CACHE_KEY = "appointments:transition_rules"

    def __init__(self, cache_manager: CacheManager | None = None, ttl: int | None = None):
        """Initialize registry with optional cache manager."""
        self.cache = cache_manager
        self.ttl = ttl
        self._table: TransitionTable | None = None
        self._generation: str | None = None

    async def get_table(self, db: AsyncSession) -> TransitionTable:
        """Return the current table, reloading it when the shared snapshot changed."""
        if self.cache is None:
            if self._table is None:
                self._table = TransitionTable(await self._load_rules(db))
            return self._table

        cached = self.cache.get_json(self.CACHE_KEY)
        if isinstance(cached, dict) and cached.get("generation") and "rules" in cached:
            if self._table is None or cached["generation"] != self._generation:
                self._table = TransitionTable(
                    TransitionRule.from_mapping(r) for r in cached["rules"]
                )
                self._generation = cached["generation"]
                logger.debug(
                    "transition_rules_loaded",
                    source="cache",
                    generation=self._generation,
                    count=len(self._table),
                )
            return self._table

        rules = await self._load_rules(db)
        self._table = TransitionTable(rules)
        self._generation = uuid4().hex
        self.cache.set_json(
            self.CACHE_KEY,
            {"generation": self._generation, "rules": [r.to_dict() for r in rules]},
            ttl=self.ttl,
        )
        return self._table

    def invalidate(self) -> None:
        """Drop every cached copy so the next lookup in any worker reloads from the database."""
        self._table = None
        self._generation = None
        if self.cache:
            self.cache.delete(self.CACHE_KEY)
        logger.info("transition_rules_invalidated")

    async def _load_rules(self, db: AsyncSession) -> list[TransitionRule]:
        result = await db.execute(
            select(appointment_state_transitions).order_by(appointment_state_transitions.c.id)
        )
        rules = [TransitionRule.from_mapping(row) for row in result.mappings().all()]
        logger.info("transition_rules_loaded", source="database", count=len(rules))
        return rules


async def seed_transition_rules(
    db: AsyncSession,
    rules: Iterable[TransitionRule] = DEFAULT_TRANSITION_RULES,
) -> int:
    """
    Insert transition rules that are not present yet.

    Args:
        db: Database session
        rules: Rules to ensure

    Returns:
        Number of rules inserted
    """
    result = await db.execute(select(appointment_state_transitions))
    existing = {(row["from_status"], row["to_status"]) for row in result.mappings().all()}

    missing = [
        r.to_dict()
        for r in rules
        if (r.from_status.value if r.from_status else None, r.to_status.value) not in existing
    ]
    if missing:
        await db.execute(insert(appointment_state_transitions), missing)
    await db.commit()

    return len(missing)
