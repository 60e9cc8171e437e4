import logging

from reachbot.db import DocumentStore
from reachbot.errors import AuthorizationError, NotFoundError
from reachbot.models import AUTHOR_TYPES, Query, QueryStatus, ReachOutStatus

logger = logging.getLogger(__name__)


class QueryRegistry:
    """Outreach requests raised by hr and client users."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def create(self, author_id: str, text: str) -> Query:
        """Persist a new ``init`` query. Only hr and client users may author one."""
        author = self.store.find_user_by_id(author_id)
        if author is None:
            raise NotFoundError(f"author {author_id} not found")
        if author.type not in AUTHOR_TYPES:
            raise AuthorizationError(
                f"user {author.id} with type {author.type.value} cannot create queries"
            )
        query = self.store.insert_query(Query(author_id=author.id, author_type=author.type, text=text))
        logger.info("[QUERY] Created query %s by %s (%s): %r", query.id, author.id, author.type.value, text[:80])
        return query

    def get_by_id(self, query_id: str) -> Query:
        query = self.store.get_query(query_id)
        if query is None:
            raise NotFoundError(f"query {query_id} not found")
        return query

    def update_status(self, query_id: str, status: QueryStatus) -> Query:
        query = self.get_by_id(query_id)
        if query.terminal and status != query.status:
            logger.warning(
                "[QUERY] Refusing to move terminal query %s from %s to %s",
                query_id, query.status.value, status.value,
            )
            return query
        logger.info("[QUERY] %s: %s -> %s", query_id, query.status.value, status.value)
        return self.store.update_query(query_id, status=status)

    def is_successful(self, query_id: str) -> bool:
        """True once more than half of the query's reach-outs have qualified.

        Crossing the threshold marks the query ``success``. Below the threshold
        nothing is written, so repeated calls are side-effect free.
        """
        query = self.get_by_id(query_id)
        if query.status == QueryStatus.SUCCESS:
            return True
        if query.status == QueryStatus.FAIL:
            return False

        reach_outs = self.store.find_reach_outs_for_query(query_id)
        total = len(reach_outs)
        qualified = sum(1 for r in reach_outs if r.status == ReachOutStatus.QUALIFY)
        logger.info("[QUERY] %s success check: %d/%d qualified", query_id, qualified, total)
        if total and qualified > total / 2:
            self.store.update_query(query_id, status=QueryStatus.SUCCESS)
            logger.info("[QUERY] %s marked success", query_id)
            return True
        return False

    def unreported_successes(self, author_id: str) -> list[Query]:
        return self.store.find_queries_by_author(
            author_id, status=QueryStatus.SUCCESS.value, reported=False,
        )

    def mark_reported(self, query_id: str) -> Query:
        return self.store.update_query(query_id, reported=True)
