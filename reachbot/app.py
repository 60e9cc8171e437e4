"""Composition root: wires storage, cache, classifier and transport into the services."""
import logging
from dataclasses import dataclass
from typing import Optional

import redis

from reachbot import config
from reachbot.backends import LLMBackend, get_backend
from reachbot.cache import UserGateway
from reachbot.classifier import Classifier
from reachbot.coordinator import OutreachCoordinator
from reachbot.db import DocumentStore
from reachbot.integrations import ArtifactIndexClient, CandidateSearchClient
from reachbot.matcher import BackgroundMatcher, JobQueue
from reachbot.queries import QueryRegistry
from reachbot.reach_outs import ReachOutRegistry
from reachbot.transport import Transport

logger = logging.getLogger(__name__)


@dataclass
class Services:
    gateway: UserGateway
    queries: QueryRegistry
    reach_outs: ReachOutRegistry
    classifier: Classifier
    job_queue: JobQueue
    coordinator: OutreachCoordinator
    matcher: BackgroundMatcher


def build_services(
    transport: Transport,
    db_path: str = config.DB_PATH,
    cache: Optional[redis.Redis] = None,
    backend: Optional[LLMBackend] = None,
    candidate_search: Optional[CandidateSearchClient] = None,
    indexer: Optional[ArtifactIndexClient] = None,
    fanout_delay: float = config.FANOUT_DELAY_SECS,
) -> Services:
    store = DocumentStore(db_path)
    if cache is None:
        cache = redis.Redis.from_url(config.REDIS_URL, decode_responses=True)
    backend = backend or get_backend(config.LLM_PROVIDER)

    gateway = UserGateway(store, cache, ttl=config.USER_CACHE_TTL_SECS, history_length=config.HISTORY_LENGTH)
    queries = QueryRegistry(store)
    reach_outs = ReachOutRegistry(store)
    classifier = Classifier(backend)
    job_queue = JobQueue(cache, max_attempts=config.JOB_MAX_ATTEMPTS)

    coordinator = OutreachCoordinator(
        gateway=gateway,
        queries=queries,
        reach_outs=reach_outs,
        classifier=classifier,
        transport=transport,
        candidate_search=candidate_search or CandidateSearchClient(),
        indexer=indexer or ArtifactIndexClient(),
        job_queue=job_queue,
        fanout_delay=fanout_delay,
        min_phone_digits=config.MIN_PHONE_DIGITS,
        document_char_limit=config.DOCUMENT_CHAR_LIMIT,
    )
    matcher = BackgroundMatcher(queries, reach_outs, gateway, classifier, sweep=coordinator.check_reach_out)
    logger.info("Services ready: provider=%s db=%s", config.LLM_PROVIDER, db_path)
    return Services(
        gateway=gateway,
        queries=queries,
        reach_outs=reach_outs,
        classifier=classifier,
        job_queue=job_queue,
        coordinator=coordinator,
        matcher=matcher,
    )
