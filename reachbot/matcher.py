import json
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

import redis

from reachbot.cache import UserGateway
from reachbot.classifier import Classifier
from reachbot.config import JOB_MAX_ATTEMPTS, JOB_POLL_TIMEOUT_SECS
from reachbot.errors import NotFoundError
from reachbot.models import QueryStatus, ReachOutStatus, ReachOutType, User
from reachbot.queries import QueryRegistry
from reachbot.reach_outs import ReachOutRegistry, reach_out_type_for

logger = logging.getLogger(__name__)


@dataclass
class OutreachJob:
    query_id: str
    attempts: int = 0
    raw: str = ""

    def encode(self) -> str:
        return json.dumps({"query_id": self.query_id, "attempts": self.attempts})


class JobQueue:
    """Durable outreach job queue on Redis lists.

    Jobs move from ``pending`` to ``inflight`` while a worker holds them and are
    removed on ack. Failed jobs are re-queued until ``max_attempts`` and then
    parked on ``failed``. Delivery is at-least-once.
    """

    PENDING_KEY = "jobs:outreach:pending"
    INFLIGHT_KEY = "jobs:outreach:inflight"
    FAILED_KEY = "jobs:outreach:failed"

    def __init__(self, client: redis.Redis, max_attempts: int = JOB_MAX_ATTEMPTS):
        self.client = client
        self.max_attempts = max_attempts

    def enqueue(self, query_id: str) -> OutreachJob:
        job = OutreachJob(query_id=query_id)
        self.client.lpush(self.PENDING_KEY, job.encode())
        logger.info("[QUEUE] Enqueued outreach job for query %s", query_id)
        return job

    def reserve(self, timeout: int = JOB_POLL_TIMEOUT_SECS) -> Optional[OutreachJob]:
        raw = self.client.brpoplpush(self.PENDING_KEY, self.INFLIGHT_KEY, timeout=timeout)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            data = json.loads(raw)
            return OutreachJob(query_id=data["query_id"], attempts=int(data.get("attempts", 0)), raw=raw)
        except (ValueError, KeyError, TypeError):
            logger.error("[QUEUE] Dropping malformed job payload %r", raw)
            self.client.lrem(self.INFLIGHT_KEY, 0, raw)
            self.client.lpush(self.FAILED_KEY, raw)
            return None

    def ack(self, job: OutreachJob):
        self.client.lrem(self.INFLIGHT_KEY, 0, job.raw)

    def fail(self, job: OutreachJob):
        retry = OutreachJob(query_id=job.query_id, attempts=job.attempts + 1)
        pipe = self.client.pipeline()
        pipe.lrem(self.INFLIGHT_KEY, 0, job.raw)
        if retry.attempts >= self.max_attempts:
            pipe.lpush(self.FAILED_KEY, retry.encode())
            logger.error("[QUEUE] Job for query %s failed %d times, parking it", job.query_id, retry.attempts)
        else:
            pipe.lpush(self.PENDING_KEY, retry.encode())
            logger.warning("[QUEUE] Re-queued job for query %s (attempt %d)", job.query_id, retry.attempts)
        pipe.execute()


class BackgroundMatcher:
    """Screens the existing user base for a query and creates held reach-outs."""

    def __init__(
        self,
        queries: QueryRegistry,
        reach_outs: ReachOutRegistry,
        gateway: UserGateway,
        classifier: Classifier,
        sweep: Optional[Callable[[str], bool]] = None,
    ):
        self.queries = queries
        self.reach_outs = reach_outs
        self.gateway = gateway
        self.classifier = classifier
        self.sweep = sweep

    def process(self, query_id: str) -> int:
        """Run one job. Returns the number of reach-outs created.

        Safe to repeat: pairs that already have a reach-out are skipped.
        """
        try:
            query = self.queries.get_by_id(query_id)
        except NotFoundError:
            logger.error("[MATCH] Query %s not found, aborting job", query_id)
            return 0
        if query.terminal:
            logger.info("[MATCH] Query %s already %s, nothing to do", query_id, query.status.value)
            return 0

        pool = self.gateway.find_potential_candidates()
        logger.info("[MATCH] Screening %d potential candidates for query %s", len(pool), query_id)

        created: list[User] = []
        for user in pool:
            if user.id == query.author_id:
                continue
            if self.reach_outs.exists_for_pair(query.id, user.id):
                continue
            if not self.classifier.screen_candidate(user, query):
                logger.info("[MATCH] %s is not a fit for %s", user.id, query_id)
                continue
            kind = reach_out_type_for(query.author_type, user.type)
            user_info = self.classifier.describe_candidate(user, query) if kind == ReachOutType.NOTIFY else ""
            self.reach_outs.create(user.id, query.id, kind, ReachOutStatus.HOLD, user_info)
            created.append(user)

        if not self.reach_outs.find_for_query(query.id):
            logger.info("[MATCH] No candidates for query %s, marking fail", query_id)
            self.queries.update_status(query.id, QueryStatus.FAIL)
            return 0
        if created:
            self.queries.update_status(query.id, QueryStatus.HOLD)

        if self.sweep:
            for user in created:
                try:
                    self.sweep(user.jid)
                except Exception:
                    logger.exception("[MATCH] Sweep failed for %s", user.jid)
        logger.info("[MATCH] Query %s: %d new reach-outs", query_id, len(created))
        return len(created)

    def run_forever(self, queue: JobQueue, stop_event: Optional[threading.Event] = None):
        logger.info("[MATCH] Worker started")
        while not (stop_event and stop_event.is_set()):
            job = queue.reserve()
            if job is None:
                continue
            try:
                self.process(job.query_id)
            except Exception:
                logger.exception("[MATCH] Job for query %s failed", job.query_id)
                queue.fail(job)
            else:
                queue.ack(job)
        logger.info("[MATCH] Worker stopped")
