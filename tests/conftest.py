"""Shared fixtures: temp sqlite store, in-memory Redis stand-in, recording transport."""
import os
from unittest.mock import MagicMock

import pytest

from reachbot.backends.base import ModelReply
from reachbot.cache import UserGateway
from reachbot.classifier import Classifier, DocumentVerdict, IdentityVerdict
from reachbot.coordinator import OutreachCoordinator
from reachbot.db import DocumentStore
from reachbot.errors import DeliveryError
from reachbot.models import User, UserType
from reachbot.queries import QueryRegistry
from reachbot.reach_outs import ReachOutRegistry
from reachbot.transport import Transport


def _slice(items, start, end):
    n = len(items)
    if start < 0:
        start = max(0, n + start)
    if end < 0:
        end = n + end
    return items[start:end + 1]


class InMemoryRedis:
    """The subset of the redis.Redis API the bot uses, with decode_responses semantics."""

    def __init__(self):
        self.values = {}
        self.lists = {}
        self.expiry = {}

    def get(self, key):
        return self.values.get(key)

    def set(self, key, value, ex=None):
        self.values[key] = value
        if ex is not None:
            self.expiry[key] = ex
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += int(self.values.pop(key, None) is not None or self.lists.pop(key, None) is not None)
        return removed

    def lpush(self, key, *values):
        lst = self.lists.setdefault(key, [])
        for v in values:
            lst.insert(0, v)
        return len(lst)

    def rpush(self, key, *values):
        lst = self.lists.setdefault(key, [])
        lst.extend(values)
        return len(lst)

    def lrange(self, key, start, end):
        return list(_slice(self.lists.get(key, []), start, end))

    def ltrim(self, key, start, end):
        if key in self.lists:
            self.lists[key] = _slice(self.lists[key], start, end)
        return True

    def lrem(self, key, count, value):
        lst = self.lists.get(key, [])
        before = len(lst)
        self.lists[key] = [v for v in lst if v != value]
        return before - len(self.lists[key])

    def brpoplpush(self, src, dst, timeout=0):
        lst = self.lists.get(src)
        if not lst:
            return None
        value = lst.pop()
        self.lists.setdefault(dst, []).insert(0, value)
        return value

    def pipeline(self):
        return _Pipeline(self)


class _Pipeline:
    def __init__(self, client):
        self.client = client
        self.calls = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return queue

    def execute(self):
        results = [getattr(self.client, name)(*args, **kwargs) for name, args, kwargs in self.calls]
        self.calls = []
        return results


class RecordingTransport(Transport):
    """Captures outbound text; phone numbers resolve to WhatsApp-style jids."""

    def __init__(self):
        self.sent = []
        self.typing = []
        self.fail_for = set()

    def send_text(self, recipient_id, text):
        if recipient_id in self.fail_for:
            raise DeliveryError(f"cannot reach {recipient_id}")
        self.sent.append((recipient_id, text))

    def start_typing(self, recipient_id):
        self.typing.append(("start", recipient_id))

    def stop_typing(self, recipient_id):
        self.typing.append(("stop", recipient_id))

    def resolve_recipient(self, phone):
        return f"{phone}@s.whatsapp.net"

    def texts_to(self, recipient_id):
        return [text for rid, text in self.sent if rid == recipient_id]


@pytest.fixture
def store(tmp_path):
    return DocumentStore(os.path.join(tmp_path, "test_reachbot.db"))


@pytest.fixture
def fake_redis():
    return InMemoryRedis()


@pytest.fixture
def gateway(store, fake_redis):
    return UserGateway(store, fake_redis, ttl=3600, history_length=30)


@pytest.fixture
def queries(store):
    return QueryRegistry(store)


@pytest.fixture
def reach_outs(store):
    return ReachOutRegistry(store)


@pytest.fixture
def classifier():
    """Classifier double with neutral defaults; tests override what they exercise."""
    mock = MagicMock(spec=Classifier)
    mock.reply.return_value = ModelReply(text="Happy to help!")
    mock.opening_message.return_value = "Hi! I have a role that fits you. Interested?"
    mock.notify_message.return_value = "FYI: a new opportunity matches your profile."
    mock.summarize_user.return_value = "Interested and available next month."
    mock.summarize_need.return_value = "Senior backend engineer, remote"
    mock.summarize_results.return_value = "Good news: people qualified for your opportunity."
    mock.describe_candidate.return_value = "Solid match for the role."
    mock.extract_profile_updates.return_value = "Knows Go and Kubernetes."
    mock.qualify.return_value = None
    mock.screen_candidate.return_value = True
    mock.select_candidates.return_value = []
    mock.match_identity.return_value = IdentityVerdict(matched=False)
    mock.classify_document.return_value = DocumentVerdict(is_resume=False)
    return mock


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def coordinator(gateway, queries, reach_outs, classifier, transport):
    return OutreachCoordinator(
        gateway=gateway,
        queries=queries,
        reach_outs=reach_outs,
        classifier=classifier,
        transport=transport,
        candidate_search=MagicMock(),
        indexer=MagicMock(),
        job_queue=MagicMock(),
        fanout_delay=0,
    )


@pytest.fixture
def make_user(gateway):
    """Create a stored user with the given type (engaged types need a reach-out id)."""
    def _make(phone, type=UserType.NEW, name="", **fields):
        user = gateway.get_user(f"{phone}@s.whatsapp.net", name=name, phone=phone)
        if type != UserType.NEW or fields:
            user = gateway.update_user(user.id, {"type": type, **fields})
        return user
    return _make


def assert_invariant(store, *users: User):
    """Engaged users hold a reach-out and everyone else holds none."""
    for user in users:
        fresh = store.find_user_by_id(user.id)
        engaged = fresh.type in (UserType.ROF, UserType.ROC)
        assert engaged == (fresh.current_reach_out is not None), fresh
