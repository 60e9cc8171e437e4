import json
import logging
from typing import Any

import redis
from pydantic import ValidationError

from reachbot.db import DocumentStore
from reachbot.errors import InvalidTransitionError, NotFoundError
from reachbot.models import HistoryEntry, Message, User, UserType

logger = logging.getLogger(__name__)


def phone_from_jid(jid: str) -> str:
    return jid.split("@", 1)[0]


class UserGateway:
    """Read-through user cache and write-through message history over the document store.

    The store is authoritative. Redis holds ``user:{jid}`` snapshots that expire after
    ``ttl`` seconds and a ``history:{jid}`` list of ``{role, text}`` pairs, newest first,
    capped at ``history_length`` entries.
    """

    def __init__(self, store: DocumentStore, cache: redis.Redis, ttl: int, history_length: int):
        self.store = store
        self.cache = cache
        self.ttl = ttl
        self.history_length = history_length

    @staticmethod
    def _user_key(jid: str) -> str:
        return f"user:{jid}"

    @staticmethod
    def _history_key(jid: str) -> str:
        return f"history:{jid}"

    def _cache_user(self, user: User):
        self.cache.set(self._user_key(user.jid), user.model_dump_json(), ex=self.ttl)

    def get_user(self, jid: str, name: str = "", phone: str = "") -> User:
        """Return the user for ``jid``, creating a ``new`` user on first contact."""
        cached = self.cache.get(self._user_key(jid))
        if cached:
            try:
                return User.model_validate_json(cached)
            except ValidationError:
                logger.warning("[CACHE] Discarding unreadable snapshot for %s", jid)

        user = self.store.find_user_by_jid(jid)
        if user is None:
            user = self.store.insert_user(User(
                jid=jid,
                name=name,
                phone=phone or phone_from_jid(jid),
                type=UserType.NEW,
            ))
            logger.info("[CACHE] Created user id=%s jid=%s", user.id, jid)
        self._cache_user(user)
        return user

    def find_user_by_id(self, user_id: str) -> User:
        user = self.store.find_user_by_id(user_id)
        if user is None:
            raise NotFoundError(f"user {user_id} not found")
        return user

    def update_user(self, user_id: str, patch: dict[str, Any]) -> User:
        """Apply ``patch`` to the stored user, then refresh its cache entry.

        Raises InvalidTransitionError when the patched user would be engaged
        without a reach-out (or hold one while not engaged).
        """
        current = self.find_user_by_id(user_id)
        try:
            updated = User.model_validate({**current.model_dump(), **patch})
        except ValidationError as exc:
            raise InvalidTransitionError(str(exc)) from exc
        if self.store.replace_user(updated) is None:
            raise NotFoundError(f"user {user_id} not found")
        self._cache_user(updated)
        logger.info(
            "[CACHE] Updated user %s: type=%s current_reach_out=%s",
            updated.jid, updated.type.value, updated.current_reach_out,
        )
        return updated

    def append_message(self, message: Message):
        """Persist ``message`` and mirror it into the recent-history list.

        A store failure propagates before the cache is touched.
        """
        self.store.insert_message(message)
        key = self._history_key(message.jid)
        entry = HistoryEntry(role=message.by, text=message.content)
        self.cache.lpush(key, entry.model_dump_json())
        self.cache.ltrim(key, 0, self.history_length - 1)

    def get_history(self, jid: str) -> list[HistoryEntry]:
        """Recent history for ``jid`` in chronological order."""
        key = self._history_key(jid)
        raw = self.cache.lrange(key, 0, self.history_length - 1)
        if not raw:
            recent = self.store.recent_messages(jid, self.history_length)
            if not recent:
                return []
            entries = [HistoryEntry(role=m.by, text=m.content) for m in recent]
            pipe = self.cache.pipeline()
            pipe.delete(key)
            # recent is newest first; RPUSH keeps that order at the head of the list
            pipe.rpush(key, *[e.model_dump_json() for e in entries])
            pipe.ltrim(key, 0, self.history_length - 1)
            pipe.execute()
            logger.info("[CACHE] Backfilled %d history entries for %s", len(entries), jid)
            return list(reversed(entries))

        entries = []
        for item in raw:
            try:
                entries.append(HistoryEntry.model_validate(json.loads(item)))
            except (ValueError, ValidationError):
                logger.warning("[CACHE] Skipping malformed history entry for %s", jid)
        return list(reversed(entries))

    def find_potential_candidates(self) -> list[User]:
        """Idol users not currently engaged in a reach-out."""
        return self.store.find_users_by_type(UserType.IDOL, unengaged_only=True)
