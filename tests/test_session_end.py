"""Tests for end-of-session dispatch by user type."""
import pytest

from reachbot import prompts
from reachbot.errors import TransientProviderError
from reachbot.models import (
    DEFAULT_PROFILE,
    Candidate,
    Message,
    MessageAuthor,
    QueryStatus,
    ReachOutStatus,
    ReachOutType,
    UserType,
)

from conftest import assert_invariant


@pytest.fixture
def hr(make_user):
    return make_user("15550000001", UserType.HR, name="Hana")


@pytest.fixture
def engaged(make_user, gateway, queries, reach_outs, hr):
    query = queries.create(hr.id, "Senior backend engineer, remote")
    target = make_user("15550000099", UserType.IDOL, name="Sam")
    ro = reach_outs.create(target.id, query.id, ReachOutType.ASK, status=ReachOutStatus.INIT)
    target = gateway.update_user(target.id, {"type": UserType.ROC, "current_reach_out": ro.id})
    return target, ro, query


def _say(gateway, user, text, by=MessageAuthor.USER):
    gateway.append_message(Message(jid=user.jid, by=by, type=user.type, content=text))


# --- new / idol ---

def test_new_user_gets_assigned_type(coordinator, transport, make_user, store):
    user = make_user("15550000500")
    result = coordinator.end_session(user.jid, "candidate")
    assert result == "now reply as if you were an established candidate."
    assert store.find_user_by_id(user.id).type == UserType.CANDIDATE
    assert transport.texts_to(user.jid) == [prompts.SESSION_CHANGED_MESSAGE]


def test_new_user_without_type(coordinator, make_user, store):
    user = make_user("15550000501")
    assert coordinator.end_session(user.jid) == prompts.MISSING_TYPE_MESSAGE
    assert store.find_user_by_id(user.id).type == UserType.NEW


def test_idol_with_pending_work_sends_reach_outs(coordinator, queries, reach_outs, make_user, hr, store):
    user = make_user("15550000502", UserType.IDOL)
    query = queries.create(hr.id, "Ops lead")
    reach_outs.create(user.id, query.id, ReachOutType.NOTIFY)
    assert coordinator.end_session(user.jid, "client") == "reachOuts sent"
    # Type is kept; the pending work took priority
    assert store.find_user_by_id(user.id).type == UserType.IDOL


def test_idol_without_pending_work_switches_type(coordinator, make_user, store):
    user = make_user("15550000503", UserType.IDOL)
    assert coordinator.end_session(user.jid, "hr") == "now reply as if you were an established hr."
    assert store.find_user_by_id(user.id).type == UserType.HR


# --- reach-out conversations ---

def test_qualify_records_summary_and_reports_to_author(coordinator, classifier, transport, gateway,
                                                       queries, reach_outs, engaged, hr, store):
    target, ro, query = engaged
    author = gateway.update_user(hr.id, {"type": UserType.IDOL})
    classifier.qualify.return_value = "qualify"

    assert coordinator.end_session(target.jid) == "reachOut ended"

    stored_ro = reach_outs.find_by_id(ro.id)
    assert stored_ro.status == ReachOutStatus.QUALIFY
    assert stored_ro.end is True
    assert stored_ro.user_info == "Interested and available next month."
    assert queries.get_by_id(query.id).status == QueryStatus.SUCCESS
    assert queries.get_by_id(query.id).reported is True
    assert transport.texts_to(author.jid) == ["Good news: people qualified for your opportunity."]

    fresh = store.find_user_by_id(target.id)
    assert fresh.type == UserType.IDOL
    assert fresh.current_reach_out is None
    assert_invariant(store, fresh)
    assert transport.texts_to(target.jid) == [prompts.SESSION_CHANGED_MESSAGE]


def test_qualify_without_summary_when_provider_down(coordinator, classifier, reach_outs, engaged):
    target, ro, _ = engaged
    classifier.qualify.return_value = "qualify"
    classifier.summarize_user.side_effect = TransientProviderError("overloaded")
    coordinator.end_session(target.jid)
    stored = reach_outs.find_by_id(ro.id)
    assert stored.status == ReachOutStatus.QUALIFY
    assert stored.user_info == ""


def test_fail_verdict(coordinator, classifier, queries, reach_outs, engaged, store):
    target, ro, query = engaged
    classifier.qualify.return_value = "fail"
    assert coordinator.end_session(target.jid) == "reachOut ended"
    assert reach_outs.find_by_id(ro.id).status == ReachOutStatus.FAIL
    assert queries.get_by_id(query.id).status == QueryStatus.INIT
    assert store.find_user_by_id(target.id).type == UserType.IDOL


def test_undecided_verdict_changes_nothing(coordinator, classifier, reach_outs, engaged, store):
    target, ro, _ = engaged
    classifier.qualify.return_value = None
    assert coordinator.end_session(target.jid) == "reachOut undecided"
    assert reach_outs.find_by_id(ro.id).status == ReachOutStatus.INIT
    fresh = store.find_user_by_id(target.id)
    assert fresh.type == UserType.ROC
    assert fresh.current_reach_out == ro.id


def test_qualify_opens_next_held_reach_out(coordinator, classifier, transport, gateway, queries, reach_outs,
                                           engaged, make_user, store):
    target, _, _ = engaged
    client = make_user("15550000002", UserType.CLIENT)
    next_query = queries.create(client.id, "Logo design")
    nxt = reach_outs.create(target.id, next_query.id, ReachOutType.ASK)
    classifier.qualify.return_value = "qualify"

    coordinator.end_session(target.jid)
    fresh = store.find_user_by_id(target.id)
    assert fresh.type == UserType.ROF
    assert fresh.current_reach_out == nxt.id
    assert transport.texts_to(target.jid)[0] == prompts.UPDATES_INTRO_MESSAGE


def test_missing_reach_out_aborts(coordinator, gateway, make_user, store):
    user = make_user("15550000504", UserType.ROF, current_reach_out="gone")
    assert coordinator.end_session(user.jid) == "aborted"
    assert store.find_user_by_id(user.id).current_reach_out == "gone"


# --- candidate / freelancer ---

def test_profile_session_replaces_default_profile(coordinator, classifier, make_user, store):
    user = make_user("15550000505", UserType.CANDIDATE)
    assert coordinator.end_session(user.jid) == "profile updated"
    fresh = store.find_user_by_id(user.id)
    assert fresh.profile == "Knows Go and Kubernetes."
    assert fresh.metadata == {"updated_info": "Knows Go and Kubernetes."}
    assert fresh.type == UserType.IDOL


def test_profile_session_appends_to_existing_profile(coordinator, make_user, store):
    user = make_user("15550000506", UserType.FREELANCER, profile="Designer in Lisbon.")
    coordinator.end_session(user.jid)
    assert store.find_user_by_id(user.id).profile == "Designer in Lisbon.\nKnows Go and Kubernetes."


def test_profile_session_without_updates(coordinator, classifier, make_user, store):
    classifier.extract_profile_updates.return_value = ""
    user = make_user("15550000507", UserType.CANDIDATE)
    coordinator.end_session(user.jid)
    fresh = store.find_user_by_id(user.id)
    assert fresh.profile == DEFAULT_PROFILE
    assert fresh.type == UserType.IDOL


# --- client / hr ---

def test_query_session_fans_out(coordinator, classifier, transport, reach_outs, queries, hr, store):
    coordinator.candidate_search.search.return_value = [{"name": "Ann", "phone": "15550000600"}]
    classifier.select_candidates.return_value = [Candidate(name="Ann", phone="15550000600")]

    assert coordinator.end_session(hr.jid) == "Query processed and reachOuts initiated."

    coordinator.candidate_search.search.assert_called_once_with("Senior backend engineer, remote")
    [query] = queries.store.find_queries_by_author(hr.id)
    assert query.text == "Senior backend engineer, remote"
    [ro] = reach_outs.find_for_query(query.id)
    ann = store.find_user_by_jid("15550000600@s.whatsapp.net")
    assert ro.target_id == ann.id
    assert ann.type == UserType.ROC
    assert store.find_user_by_id(hr.id).type == UserType.IDOL
    coordinator.job_queue.enqueue.assert_not_called()


def test_query_session_without_candidates_queues_background_match(coordinator, queries, hr):
    coordinator.candidate_search.search.return_value = []
    coordinator.end_session(hr.jid)
    query_id = coordinator.job_queue.enqueue.call_args.args[0]
    assert queries.get_by_id(query_id).author_id == hr.id


def test_query_session_falls_back_to_last_user_turn(coordinator, classifier, gateway, hr):
    classifier.summarize_need.return_value = ""
    coordinator.candidate_search.search.return_value = []
    _say(gateway, hr, "Need a React dev")
    _say(gateway, hr, "Sure, tell me more", by=MessageAuthor.MODEL)
    coordinator.end_session(hr.jid)
    coordinator.candidate_search.search.assert_called_once_with("Need a React dev")


def test_query_session_without_any_need(coordinator, classifier, hr, store):
    classifier.summarize_need.return_value = ""
    assert coordinator.end_session(hr.jid) == "no need statement"
    assert store.find_user_by_id(hr.id).type == UserType.HR


def test_fail_verdict_leaves_nothing_pending(coordinator, classifier, engaged, store):
    target, _, _ = engaged
    classifier.qualify.return_value = "fail"
    coordinator.end_session(target.jid)
    fresh = store.find_user_by_id(target.id)
    assert fresh.current_reach_out is None
    assert_invariant(store, fresh)
    assert coordinator.check_reach_out(target.jid) is False


def test_query_dispatch_sends_one_ask_to_new_candidate(coordinator, classifier, transport, hr):
    coordinator.candidate_search.search.return_value = [{"name": "Ann", "phone": "15550000601"}]
    classifier.select_candidates.return_value = [Candidate(name="Ann", phone="15550000601")]
    coordinator.end_session(hr.jid)
    assert transport.texts_to("15550000601@s.whatsapp.net") == [
        prompts.NEW_USER_INTRO_MESSAGE,
        "Hi! I have a role that fits you. Interested?",
    ]
    classifier.opening_message.assert_called_once()
