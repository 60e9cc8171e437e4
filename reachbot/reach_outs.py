import logging

from reachbot.db import DocumentStore
from reachbot.errors import NotFoundError
from reachbot.models import (
    TERMINAL_REACH_OUT_STATUSES,
    ReachOut,
    ReachOutStatus,
    ReachOutType,
    UserType,
)

logger = logging.getLogger(__name__)


def reach_out_type_for(author_type: UserType, target_type: UserType) -> ReachOutType:
    """Clients always ask; hr asks brand-new targets and notifies everyone else."""
    if author_type == UserType.CLIENT or (author_type == UserType.HR and target_type == UserType.NEW):
        return ReachOutType.ASK
    return ReachOutType.NOTIFY


class ReachOutRegistry:
    """One outreach attempt per (query, target) pair."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def _with_query(self, reach_out: ReachOut) -> ReachOut:
        query = self.store.get_query(reach_out.query_id)
        if query is None:
            raise NotFoundError(f"query {reach_out.query_id} for reach-out {reach_out.id} not found")
        return reach_out.model_copy(update={"query": query})

    def create(self, target_id: str, query_id: str, type: ReachOutType,
               status: ReachOutStatus = ReachOutStatus.HOLD, user_info: str = "") -> ReachOut:
        """Create a reach-out, or return the existing one for the same pair."""
        reach_out, created = self.store.insert_reach_out(ReachOut(
            target_id=target_id,
            query_id=query_id,
            type=type,
            status=status,
            user_info=user_info,
        ))
        if created:
            logger.info(
                "[REACHOUT] Created %s (%s, %s) query=%s target=%s",
                reach_out.id, type.value, status.value, query_id, target_id,
            )
        else:
            logger.info(
                "[REACHOUT] Pair query=%s target=%s already has reach-out %s (%s)",
                query_id, target_id, reach_out.id, reach_out.status.value,
            )
        return reach_out

    def find_by_id(self, reach_out_id: str) -> ReachOut:
        reach_out = self.store.get_reach_out(reach_out_id)
        if reach_out is None:
            raise NotFoundError(f"reach-out {reach_out_id} not found")
        return self._with_query(reach_out)

    def find_held_for_user(self, target_id: str) -> list[ReachOut]:
        """Held reach-outs for a target, oldest first."""
        held = self.store.find_reach_outs_for_target(target_id, ReachOutStatus.HOLD.value)
        return [self._with_query(r) for r in held]

    def find_for_query(self, query_id: str, status: ReachOutStatus | None = None) -> list[ReachOut]:
        return self.store.find_reach_outs_for_query(query_id, status.value if status else None)

    def exists_for_pair(self, query_id: str, target_id: str) -> bool:
        return self.store.find_reach_out(query_id, target_id) is not None

    def update_status(self, reach_out_id: str, status: ReachOutStatus) -> ReachOut:
        fields = {"status": status}
        if status in TERMINAL_REACH_OUT_STATUSES:
            fields["end"] = True
        updated = self.store.update_reach_out(reach_out_id, **fields)
        if updated is None:
            raise NotFoundError(f"reach-out {reach_out_id} not found")
        logger.info("[REACHOUT] %s -> %s", reach_out_id, status.value)
        return updated

    def update_user_info(self, reach_out_id: str, user_info: str) -> ReachOut:
        updated = self.store.update_reach_out(reach_out_id, user_info=user_info)
        if updated is None:
            raise NotFoundError(f"reach-out {reach_out_id} not found")
        return updated
