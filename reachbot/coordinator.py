import re
import time
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import ValidationError

from reachbot import prompts
from reachbot.backends.base import ToolCall
from reachbot.cache import UserGateway
from reachbot.classifier import Classifier
from reachbot.config import DOCUMENT_CHAR_LIMIT, FANOUT_DELAY_SECS, MIN_PHONE_DIGITS
from reachbot.errors import DeliveryError, NotFoundError, TransientProviderError
from reachbot.integrations import ArtifactIndexClient, CandidateSearchClient
from reachbot.models import (
    DEFAULT_PROFILE,
    Candidate,
    Message,
    MessageAuthor,
    Query,
    ReachOutStatus,
    ReachOutType,
    User,
    UserType,
)
from reachbot.queries import QueryRegistry
from reachbot.reach_outs import ReachOutRegistry, reach_out_type_for
from reachbot.transport import Attachment, InboundMessage, Transport

logger = logging.getLogger(__name__)

PROFILE_LINK_RE = re.compile(r"https?://(?:[a-z]{2,3}\.)?linkedin\.com/(?:in|pub)/[^\s<>|]+", re.IGNORECASE)
URL_RE = re.compile(r"https?://[^\s<>|]+", re.IGNORECASE)


@dataclass
class TriageResult:
    """Outcome of attachment triage.

    ``stop`` ends processing of the message. ``follow_up`` replaces the
    message text as the prompt for the general reply.
    """
    stop: bool = False
    follow_up: Optional[str] = None


def _digits(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


def _index_for(user_type: UserType) -> str:
    return "freelancer_index" if user_type == UserType.FREELANCER else "candidate_index"


class OutreachCoordinator:
    """Drives user, query and reach-out transitions from inbound messages."""

    def __init__(
        self,
        gateway: UserGateway,
        queries: QueryRegistry,
        reach_outs: ReachOutRegistry,
        classifier: Classifier,
        transport: Transport,
        candidate_search: Optional[CandidateSearchClient] = None,
        indexer: Optional[ArtifactIndexClient] = None,
        job_queue=None,
        fanout_delay: float = FANOUT_DELAY_SECS,
        min_phone_digits: int = MIN_PHONE_DIGITS,
        document_char_limit: int = DOCUMENT_CHAR_LIMIT,
    ):
        self.gateway = gateway
        self.queries = queries
        self.reach_outs = reach_outs
        self.classifier = classifier
        self.transport = transport
        self.candidate_search = candidate_search
        self.indexer = indexer
        self.job_queue = job_queue
        self.fanout_delay = fanout_delay
        self.min_phone_digits = min_phone_digits
        self.document_char_limit = document_char_limit
        # Queries whose fan-out is still creating reach-outs
        self._fanning_out: set[str] = set()
        self._session_handlers: dict[UserType, Callable[[User, Optional[str]], str]] = {
            UserType.NEW: self._end_new_session,
            UserType.IDOL: self._end_idol_session,
            UserType.ROF: self._end_reach_out_session,
            UserType.ROC: self._end_reach_out_session,
            UserType.CANDIDATE: self._end_profile_session,
            UserType.FREELANCER: self._end_profile_session,
            UserType.CLIENT: self._end_query_session,
            UserType.HR: self._end_query_session,
        }

    # --- delivery ---

    def _record(self, user: User, text: str):
        self.gateway.append_message(Message(
            jid=user.jid, by=MessageAuthor.MODEL, type=user.type, content=text,
        ))

    def _deliver(self, user: User, text: str):
        """Persist a model message, then send it. Send failures are logged only."""
        if not text:
            return
        self._record(user, text)
        try:
            self.transport.send_text(user.jid, text)
        except DeliveryError as exc:
            logger.error("[SEND] Delivery to %s failed: %s", user.jid, exc)

    def _seed(self, user: User, text: str):
        self.gateway.append_message(Message(
            jid=user.jid, by=MessageAuthor.USER, type=user.type, content=text,
        ))

    # --- inbound ---

    def handle_inbound(self, message: InboundMessage) -> Optional[str]:
        """Process one inbound message. Returns the reply for the transport to send, if any."""
        jid = message.sender_id
        user = self.gateway.get_user(jid, name=message.display_name, phone=message.phone)
        attachment = message.attachment
        content = message.text or ""
        if attachment and attachment.kind == "document" and not content:
            content = f"[document] {attachment.file_name}".strip()
        logger.info("[RECV] jid=%s type=%s attachment=%s text=%r",
                    jid, user.type.value, attachment.kind if attachment else None, content[:100])

        self.gateway.append_message(Message(
            jid=jid,
            by=MessageAuthor.USER,
            type=user.type,
            content=content,
            has_media=attachment is not None,
            media_type=attachment.kind if attachment else None,
        ))

        try:
            triage = self._triage(user, message)
            if triage.stop:
                logger.info("[TRIAGE] Stop after attachment flow for %s", jid)
                return None
            prompt = triage.follow_up or content

            history = self.gateway.get_history(jid)[:-1]
            if user.engaged:
                prompt = self._reach_out_prompt(user, prompt)
            reply = self.classifier.reply(user, history, prompt)

            if reply.tool_call:
                return self._run_tool(user, reply.tool_call)
        except TransientProviderError as exc:
            logger.warning("[RECV] Provider unavailable for %s: %s", jid, exc)
            self._record(user, prompts.TRY_AGAIN_MESSAGE)
            return prompts.TRY_AGAIN_MESSAGE

        if not reply.text:
            logger.warning("[RECV] Empty model reply for %s", jid)
            return None
        self._record(user, reply.text)
        return reply.text

    def _reach_out_prompt(self, user: User, text: str) -> str:
        try:
            reach_out = self.reach_outs.find_by_id(user.current_reach_out)
            author = self.gateway.find_user_by_id(reach_out.query.author_id)
        except NotFoundError as exc:
            logger.error("[RECV] Cannot build opportunity context for %s: %s", user.jid, exc)
            return text
        author_label = author.name or reach_out.query.author_type.value
        return (
            f"<opportunity>\nShared by: {author_label}\n{reach_out.query.text}\n</opportunity>\n\n"
            f"<user_message>\n{text}\n</user_message>"
        )

    def _run_tool(self, user: User, tool_call: ToolCall) -> Optional[str]:
        if tool_call.name != prompts.END_SESSION_TOOL.name:
            logger.warning("[SESSION] Unknown tool %s requested for %s", tool_call.name, user.jid)
            text = "Sorry, I tried to use a tool that I don't recognize."
            self._record(user, text)
            return text
        try:
            args = prompts.EndSessionArgs.model_validate(tool_call.arguments)
        except ValidationError as exc:
            logger.warning("[SESSION] Ignoring malformed tool arguments %s: %s", tool_call.arguments, exc)
            args = prompts.EndSessionArgs()
        result = self.end_session(user.jid, args.new_user_type)
        if result == prompts.MISSING_TYPE_MESSAGE:
            logger.warning("[SESSION] End of session for %s left type unchanged: %s", user.jid, result)
        return None

    # --- attachment triage ---

    def _triage(self, user: User, message: InboundMessage) -> TriageResult:
        attachment = message.attachment
        link_source = attachment.payload if attachment and attachment.kind == "link" else message.text or ""

        profile_link = PROFILE_LINK_RE.search(link_source)
        if profile_link:
            return self._match_attachment(user, profile_link.group(0))

        is_document = attachment is not None and attachment.kind == "document"
        if user.type == UserType.CANDIDATE and is_document:
            return self._classify_document(user, attachment)
        if user.type == UserType.FREELANCER:
            url = URL_RE.search(link_source)
            if url:
                return self._match_attachment(user, url.group(0))
            if is_document:
                return self._classify_document(user, attachment)
        return TriageResult()

    def _match_attachment(self, user: User, url: str) -> TriageResult:
        logger.info("[TRIAGE] Verifying link %s for %s", url, user.jid)
        self._deliver(user, prompts.INTERIM_CHECKING_MESSAGE)
        verdict = self.classifier.match_identity(user, url)
        if not verdict.matched:
            self._deliver(
                user,
                "Sorry, I couldn't confirm that this profile belongs to you, so I haven't added it. "
                "Please share a link to your own profile.",
            )
            return TriageResult(stop=True)

        found = {k: v for k, v in verdict.profile.model_dump().items() if v}
        metadata = {**(user.metadata or {}), **found, "profile_link": url}
        user = self.gateway.update_user(user.id, {"metadata": metadata})
        self._deliver(user, "Thanks! I've verified your profile and added it to your details.")
        self._seed(user, prompts.WHATS_NEXT_PROMPT)
        if self.indexer:
            self.indexer.ingest(user, url, _index_for(user.type))
        return TriageResult(follow_up=prompts.WHATS_NEXT_PROMPT)

    def _classify_document(self, user: User, attachment: Attachment) -> TriageResult:
        logger.info("[TRIAGE] Classifying document %r for %s", attachment.file_name, user.jid)
        self._deliver(user, prompts.INTERIM_CHECKING_MESSAGE)
        text = attachment.payload[: self.document_char_limit]
        verdict = self.classifier.classify_document(text)
        if not verdict.is_resume:
            self._deliver(
                user,
                "Sorry, I couldn't detect a resume in that document. "
                "Please send your CV as a PDF or Word file.",
            )
            return TriageResult(stop=True)

        found = {k: v for k, v in verdict.key_fields.model_dump().items() if v}
        metadata = {**(user.metadata or {}), "resume": found}
        user = self.gateway.update_user(user.id, {"metadata": metadata})
        self._deliver(user, "Thanks! I've received your resume and added it to your profile.")
        self._seed(user, prompts.WHATS_NEXT_PROMPT)
        if self.indexer:
            self.indexer.ingest(user, attachment.payload, _index_for(user.type), attachment.file_name)
        return TriageResult(follow_up=prompts.WHATS_NEXT_PROMPT)

    # --- session end ---

    def end_session(self, jid: str, new_type: Optional[str] = None) -> str:
        """Route an end-of-session request by the user's current type."""
        user = self.gateway.get_user(jid)
        handler = self._session_handlers.get(user.type)
        logger.info("[SESSION] End of session for %s (type=%s new_type=%s)", jid, user.type.value, new_type)
        if handler is None:
            logger.warning("[SESSION] No session handler for type %s", user.type.value)
            result = "unhandled"
        else:
            try:
                result = handler(user, new_type)
            except NotFoundError as exc:
                logger.error("[SESSION] Aborted session end for %s: %s", jid, exc)
                result = "aborted"

        try:
            self._deliver(self.gateway.get_user(jid), prompts.SESSION_CHANGED_MESSAGE)
        except Exception:
            logger.exception("[SESSION] Could not send session notice to %s", jid)
        return result

    def _assign_type(self, user: User, new_type: Optional[str]) -> str:
        if not new_type:
            logger.warning("[SESSION] No new type provided for %s user %s", user.type.value, user.jid)
            return prompts.MISSING_TYPE_MESSAGE
        self.gateway.update_user(user.id, {"type": UserType(new_type)})
        return f"now reply as if you were an established {new_type}."

    def _end_new_session(self, user: User, new_type: Optional[str]) -> str:
        return self._assign_type(user, new_type)

    def _end_idol_session(self, user: User, new_type: Optional[str]) -> str:
        if self.check_reach_out(user.jid):
            return "reachOuts sent"
        return self._assign_type(user, new_type)

    def _end_reach_out_session(self, user: User, new_type: Optional[str]) -> str:
        reach_out = self.reach_outs.find_by_id(user.current_reach_out)
        history = self.gateway.get_history(user.jid)
        verdict = self.classifier.qualify(user.type, reach_out.query, history)
        if verdict is None:
            logger.info("[SESSION] Reach-out %s undecided, conversation continues", reach_out.id)
            return "reachOut undecided"

        if verdict == "qualify":
            self.reach_outs.update_status(reach_out.id, ReachOutStatus.QUALIFY)
            try:
                summary = self.classifier.summarize_user(user, reach_out.query, history)
            except TransientProviderError as exc:
                logger.warning("[SESSION] Skipping summary for reach-out %s: %s", reach_out.id, exc)
                summary = ""
            if summary:
                self.reach_outs.update_user_info(reach_out.id, summary)
        else:
            self.reach_outs.update_status(reach_out.id, ReachOutStatus.FAIL)

        self._propagate_success(reach_out.query)
        self.gateway.update_user(user.id, {"type": UserType.IDOL, "current_reach_out": None})
        self.check_reach_out(user.jid)
        return "reachOut ended"

    def _end_profile_session(self, user: User, new_type: Optional[str]) -> str:
        history = self.gateway.get_history(user.jid)
        updates = self.classifier.extract_profile_updates(user, history)
        patch = {"type": UserType.IDOL}
        if updates:
            patch["metadata"] = {**(user.metadata or {}), "updated_info": updates}
            patch["profile"] = updates if user.profile == DEFAULT_PROFILE else f"{user.profile}\n{updates}"
        self.gateway.update_user(user.id, patch)
        self.check_reach_out(user.jid)
        return "profile updated"

    def _end_query_session(self, user: User, new_type: Optional[str]) -> str:
        history = self.gateway.get_history(user.jid)
        need = self.classifier.summarize_need(history)
        if not need:
            last_user_turns = [e.text for e in history if e.role == MessageAuthor.USER]
            need = last_user_turns[-1] if last_user_turns else ""
        if not need:
            logger.error("[SESSION] Could not derive a need statement for %s", user.jid)
            return "no need statement"

        raw = self.candidate_search.search(need) if self.candidate_search else []
        candidates = self.classifier.select_candidates(need, raw) if raw else []
        query = self.make_reach_out(user.id, need, candidates)
        if not candidates and self.job_queue is not None:
            logger.info("[SESSION] No candidates from search, queueing background match for %s", query.id)
            self.job_queue.enqueue(query.id)

        self.gateway.update_user(user.id, {"type": UserType.IDOL, "current_reach_out": None})
        self.check_reach_out(user.jid)
        return "Query processed and reachOuts initiated."

    def _propagate_success(self, query: Query):
        if query.id in self._fanning_out:
            return
        if not self.queries.is_successful(query.id):
            return
        try:
            author = self.gateway.find_user_by_id(query.author_id)
        except NotFoundError as exc:
            logger.error("[SWEEP] Author of query %s missing: %s", query.id, exc)
            return
        if author.type == UserType.IDOL:
            self.check_reach_out(author.jid)

    # --- pending-work sweep ---

    def check_reach_out(self, jid: str) -> bool:
        """Report finished queries and open held reach-outs for ``jid``.

        Returns False when nothing is held for the user.
        """
        user = self.gateway.get_user(jid)
        if user.engaged:
            logger.info("[SWEEP] %s is engaged in %s, skipping", jid, user.current_reach_out)
            return False

        self._report_successes(user)

        held = self.reach_outs.find_held_for_user(user.id)
        if not held:
            logger.info("[SWEEP] Nothing pending for %s", jid)
            return False

        logger.info("[SWEEP] %d held reach-outs for %s", len(held), jid)
        history = self.gateway.get_history(jid)
        intro = prompts.NEW_USER_INTRO_MESSAGE if user.type == UserType.NEW else prompts.UPDATES_INTRO_MESSAGE
        self._deliver(user, intro)

        for reach_out in held:
            if reach_out.type == ReachOutType.ASK:
                engaged_type = UserType.ROC if reach_out.query.author_type == UserType.HR else UserType.ROF
                text = self.classifier.opening_message(engaged_type, reach_out.query, history)
                user = self.gateway.update_user(
                    user.id, {"type": engaged_type, "current_reach_out": reach_out.id},
                )
                self.reach_outs.update_status(reach_out.id, ReachOutStatus.INIT)
                self._deliver(user, text)
                logger.info("[SWEEP] Opened ask %s for %s as %s", reach_out.id, jid, engaged_type.value)
                return True

            text = self.classifier.notify_message(reach_out.query, history)
            self.reach_outs.update_status(reach_out.id, ReachOutStatus.QUALIFY)
            self._deliver(user, text)
            logger.info("[SWEEP] Notified %s about query %s", jid, reach_out.query_id)
            self._propagate_success(reach_out.query)
        return True

    def _report_successes(self, user: User) -> bool:
        reported = False
        for query in self.queries.unreported_successes(user.id):
            qualified = self.reach_outs.find_for_query(query.id, ReachOutStatus.QUALIFY)
            summaries = [r.user_info for r in qualified if r.user_info]
            text = self.classifier.summarize_results(query, summaries)
            self.queries.mark_reported(query.id)
            self._deliver(user, text)
            logger.info("[SWEEP] Reported results of query %s to %s", query.id, user.jid)
            reported = True
        return reported

    # --- fan-out ---

    def make_reach_out(self, author_id: str, need: str, candidates: list[Candidate]) -> Query:
        """Create a query and a held reach-out per usable candidate, sweeping each target."""
        query = self.queries.create(author_id, need)
        author = self.gateway.find_user_by_id(author_id)
        logger.info("[FANOUT] Query %s: %d candidates", query.id, len(candidates))
        self._fanning_out.add(query.id)
        try:
            for candidate in candidates:
                try:
                    reached = self._reach_out_candidate(query, author, candidate)
                except Exception:
                    logger.exception("[FANOUT] Candidate %r failed for query %s", candidate.name, query.id)
                    continue
                if reached and self.fanout_delay:
                    time.sleep(self.fanout_delay)
        finally:
            self._fanning_out.discard(query.id)
        self._propagate_success(query)
        return query

    def _reach_out_candidate(self, query: Query, author: User, candidate: Candidate) -> bool:
        phone = _digits(candidate.phone)
        if len(phone) < self.min_phone_digits:
            logger.info("[FANOUT] Skipping %r: invalid phone %r", candidate.name, candidate.phone)
            return False
        if phone == _digits(author.phone):
            logger.info("[FANOUT] Skipping %r: candidate is the author", candidate.name)
            return False
        jid = self.transport.resolve_recipient(phone)
        if not jid:
            logger.info("[FANOUT] Skipping %r: no recipient for %s", candidate.name, phone)
            return False
        if jid == author.jid:
            logger.info("[FANOUT] Skipping %r: candidate is the author", candidate.name)
            return False

        target = self.gateway.get_user(jid, name=candidate.name, phone=phone)
        if target.metadata is None and candidate.metadata:
            metadata = candidate.metadata if isinstance(candidate.metadata, dict) else {"summary": candidate.metadata}
            target = self.gateway.update_user(target.id, {"metadata": metadata})

        kind = reach_out_type_for(query.author_type, target.type)
        user_info = self.classifier.describe_candidate(target, query) if kind == ReachOutType.NOTIFY else ""
        self.reach_outs.create(target.id, query.id, kind, ReachOutStatus.HOLD, user_info)
        self.check_reach_out(jid)
        return True
