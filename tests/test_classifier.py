"""Tests for the classifier boundary with a mocked backend (no API calls)."""
from unittest.mock import MagicMock

import pytest

from reachbot.backends.base import LLMBackend, ModelReply
from reachbot.classifier import (
    CandidateFit,
    CandidateSelection,
    Classifier,
    DocumentVerdict,
    IdentityVerdict,
)
from reachbot.errors import ClassificationParseError, TransientProviderError
from reachbot.models import Candidate, Query, User, UserType
from reachbot.prompts import END_SESSION_TOOL, SYSTEM_PROMPTS


@pytest.fixture
def backend():
    return MagicMock(spec=LLMBackend)


@pytest.fixture
def clf(backend):
    return Classifier(backend)


def _user(**fields):
    return User(jid="1555@s.whatsapp.net", name="Jane Doe", phone="1555", **fields)


def _query():
    return Query(author_id="a1", author_type=UserType.HR, text="Senior backend engineer, remote")


def test_classify_document_uses_model_verdict(clf, backend):
    backend.structured.return_value = DocumentVerdict(is_resume=True, confidence=0.8, reasons=["has sections"])
    verdict = clf.classify_document("some text")
    assert verdict.is_resume is True
    assert backend.structured.call_args.args[2] is DocumentVerdict


def test_classify_document_falls_back_to_heuristic(clf, backend):
    backend.structured.side_effect = ClassificationParseError("bad json")
    verdict = clf.classify_document("Grocery list: eggs, milk, bread.")
    assert verdict.is_resume is False
    assert verdict.confidence == pytest.approx(0.25)
    assert verdict.key_fields.email is None


def test_match_identity_falls_back_conservatively(clf, backend):
    backend.structured.side_effect = ClassificationParseError("bad json")
    verdict = clf.match_identity(_user(), "https://www.linkedin.com/in/john-smith")
    assert verdict.matched is False


def test_match_identity_uses_model_verdict(clf, backend):
    backend.structured.return_value = IdentityVerdict(matched=True, confidence=0.9)
    assert clf.match_identity(_user(), "https://www.linkedin.com/in/jane-doe").matched is True


def test_qualify_parses_single_word(clf, backend):
    backend.complete.return_value = "Qualify"
    assert clf.qualify(UserType.ROC, _query(), []) == "qualify"
    system_prompt, history, prompt = backend.complete.call_args.args
    assert system_prompt == SYSTEM_PROMPTS["roc"]
    assert "Senior backend engineer, remote" in prompt


def test_qualify_undecided(clf, backend):
    backend.complete.return_value = "Not sure yet, they asked about salary."
    assert clf.qualify(UserType.ROF, _query(), []) is None


def test_reply_offers_end_session_tool(clf, backend):
    backend.reply.return_value = ModelReply(text="Hi!")
    clf.reply(_user(type=UserType.NEW), [], "hello")
    args, kwargs = backend.reply.call_args
    assert args[0] == SYSTEM_PROMPTS["new"]
    assert kwargs["tools"] == [END_SESSION_TOOL]


def test_screen_candidate(clf, backend):
    backend.structured.return_value = CandidateFit(fit=True, reason="Go experience")
    assert clf.screen_candidate(_user(), _query()) is True


def test_screen_candidate_unparseable_is_no_fit(clf, backend):
    backend.structured.side_effect = ClassificationParseError("bad json")
    assert clf.screen_candidate(_user(), _query()) is False


def test_select_candidates_from_model(clf, backend):
    picked = [Candidate(name="Ann", phone="15551230000", metadata={"skills": ["go"]})]
    backend.structured.return_value = CandidateSelection(candidates=picked)
    assert clf.select_candidates("go engineer", [{"name": "Ann"}]) == picked


def test_select_candidates_falls_back_to_raw_list(clf, backend):
    backend.structured.side_effect = ClassificationParseError("bad json")
    raw = {"results": [{"name": "Ann", "phone": 15551230000, "title": "SRE"}, "junk"]}
    result = clf.select_candidates("sre", raw)
    assert len(result) == 1
    assert result[0].phone == "15551230000"
    assert result[0].metadata == {"title": "SRE"}


def test_transient_errors_propagate(clf, backend):
    backend.complete.side_effect = TransientProviderError("overloaded")
    with pytest.raises(TransientProviderError):
        clf.summarize_need([])


def test_summarize_results_lists_people(clf, backend):
    backend.complete.return_value = "Two people qualified."
    clf.summarize_results(_query(), ["Ann: available now", "Bo: remote only"])
    prompt = backend.complete.call_args.args[2]
    assert "- Ann: available now" in prompt
    assert "- Bo: remote only" in prompt
