import json
import logging
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from reachbot.backends.base import LLMBackend, ModelReply
from reachbot.errors import ClassificationParseError
from reachbot.heuristics import (
    extract_json,
    heuristic_classify_document,
    heuristic_match_identity,
    parse_qualify_verdict,
)
from reachbot.models import Candidate, HistoryEntry, Query, User, UserType
from reachbot import prompts

logger = logging.getLogger(__name__)


# --- Pydantic schemas for structured output ---

class IdentityProfile(BaseModel):
    name: Optional[str] = None
    headline: Optional[str] = None
    current_role: Optional[str] = None
    location: Optional[str] = None
    url: Optional[str] = None


class IdentityVerdict(BaseModel):
    matched: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasons: list[str] = Field(default_factory=list)
    profile: IdentityProfile = Field(default_factory=IdentityProfile)


class KeyFields(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None
    top_skills: list[str] = Field(default_factory=list)
    years_experience: Optional[float] = None


class DocumentVerdict(BaseModel):
    is_resume: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasons: list[str] = Field(default_factory=list)
    key_fields: KeyFields = Field(default_factory=KeyFields)


class CandidateFit(BaseModel):
    fit: bool
    reason: str = ""


class CandidateSelection(BaseModel):
    candidates: list[Candidate] = Field(default_factory=list)


def _opportunity(query: Optional[Query]) -> str:
    return query.text if query else "an opportunity"


def _profile_text(user: User) -> str:
    parts = []
    if user.name:
        parts.append(f"Name: {user.name}")
    if user.profile:
        parts.append(f"Profile: {user.profile}")
    if user.metadata:
        parts.append(f"Details: {json.dumps(user.metadata, default=str)}")
    return "\n".join(parts) or "No profile information available."


class Classifier:
    """Turns conversation context into verdicts and messages via an LLM backend.

    Structured calls that come back malformed fall back to local heuristics.
    TransientProviderError from the backend is not caught here.
    """

    def __init__(self, backend: LLMBackend):
        self.backend = backend

    # --- verdicts ---

    def match_identity(self, user: User, url: str) -> IdentityVerdict:
        prompt = (
            f"<known_details>\nName: {user.name or 'unknown'}\nPhone: {user.phone or 'unknown'}\n"
            f"{_profile_text(user)}\n</known_details>\n\n<shared_link>\n{url}\n</shared_link>"
        )
        try:
            verdict = self.backend.structured(
                prompts.IDENTITY_MATCH_PROMPT, prompt, IdentityVerdict, "report_identity_match",
            )
        except ClassificationParseError as exc:
            logger.warning("[CLASSIFY] identity match unparseable, using heuristic: %s", exc)
            verdict = IdentityVerdict.model_validate(heuristic_match_identity(user.name, url))
        logger.info("[CLASSIFY] identity match for %s: matched=%s confidence=%.2f",
                    user.jid, verdict.matched, verdict.confidence)
        return verdict

    def classify_document(self, text: str) -> DocumentVerdict:
        prompt = f'Classify the following extracted document text (for resume detection):\n\n"""{text}"""'
        try:
            verdict = self.backend.structured(
                prompts.DOCUMENT_CLASSIFY_PROMPT, prompt, DocumentVerdict, "report_document_class",
            )
        except ClassificationParseError as exc:
            logger.warning("[CLASSIFY] document verdict unparseable, using heuristic: %s", exc)
            verdict = DocumentVerdict.model_validate(heuristic_classify_document(text))
        logger.info("[CLASSIFY] document: is_resume=%s confidence=%.2f", verdict.is_resume, verdict.confidence)
        return verdict

    def qualify(self, user_type: UserType, query: Optional[Query], history: list[HistoryEntry]) -> Optional[str]:
        """Return "qualify", "fail" or None when the conversation has not decided yet."""
        answer = self.backend.complete(
            prompts.SYSTEM_PROMPTS[user_type.value],
            history,
            prompts.QUALIFY_PROMPT.format(opportunity=_opportunity(query)),
        )
        verdict = parse_qualify_verdict(answer)
        logger.info("[CLASSIFY] qualify verdict=%s raw=%r", verdict, (answer or "")[:40])
        return verdict

    def screen_candidate(self, user: User, query: Query) -> bool:
        prompt = f"<opportunity>\n{query.text}\n</opportunity>\n\n<person>\n{_profile_text(user)}\n</person>"
        try:
            result = self.backend.structured(
                prompts.SCREEN_CANDIDATE_PROMPT, prompt, CandidateFit, "report_candidate_fit",
            )
        except ClassificationParseError as exc:
            logger.warning("[CLASSIFY] screening unparseable for %s, treating as no fit: %s", user.id, exc)
            return False
        return result.fit

    def select_candidates(self, need: str, raw_candidates: Any) -> list[Candidate]:
        prompt = f"Here is the list of candidates:\n{json.dumps(raw_candidates, indent=2, default=str)}"
        try:
            result = self.backend.structured(
                prompts.SELECT_CANDIDATES_PROMPT.format(need=need), prompt,
                CandidateSelection, "report_candidates",
            )
            return result.candidates
        except ClassificationParseError as exc:
            logger.warning("[CLASSIFY] candidate selection unparseable, keeping raw list: %s", exc)
        return _coerce_candidates(raw_candidates)

    # --- generation ---

    def reply(self, user: User, history: list[HistoryEntry], prompt: str) -> ModelReply:
        return self.backend.reply(
            prompts.SYSTEM_PROMPTS[user.type.value], history, prompt, tools=[prompts.END_SESSION_TOOL],
        )

    def opening_message(self, user_type: UserType, query: Optional[Query], history: list[HistoryEntry]) -> str:
        return self.backend.complete(
            prompts.SYSTEM_PROMPTS[user_type.value],
            history,
            prompts.OPENING_PROMPT.format(opportunity=_opportunity(query)),
        )

    def notify_message(self, query: Optional[Query], history: list[HistoryEntry]) -> str:
        return self.backend.complete(
            prompts.SYSTEM_PROMPTS["notify"],
            history,
            prompts.NOTIFY_PROMPT.format(opportunity=_opportunity(query)),
        )

    def summarize_user(self, user: User, query: Optional[Query], history: list[HistoryEntry]) -> str:
        return self.backend.complete(
            prompts.SYSTEM_PROMPTS[user.type.value],
            history,
            prompts.SUMMARIZE_USER_PROMPT.format(opportunity=_opportunity(query)),
        )

    def summarize_need(self, history: list[HistoryEntry]) -> str:
        return self.backend.complete(
            prompts.SUMMARIZE_NEED_PROMPT, history, "Generate a search query from this conversation.",
        ).strip()

    def extract_profile_updates(self, user: User, history: list[HistoryEntry]) -> str:
        return self.backend.complete(
            prompts.SYSTEM_PROMPTS[user.type.value],
            history,
            prompts.PROFILE_UPDATE_PROMPT.format(profile=_profile_text(user)),
        ).strip()

    def summarize_results(self, query: Query, summaries: list[str]) -> str:
        people = "\n".join(f"- {s}" for s in summaries) or "- (no details recorded)"
        return self.backend.complete(
            prompts.SYSTEM_PROMPTS[query.author_type.value],
            [],
            prompts.RESULTS_SUMMARY_PROMPT.format(opportunity=query.text, people=people),
        )

    def describe_candidate(self, user: User, query: Query) -> str:
        return self.backend.complete(
            prompts.SYSTEM_PROMPTS["notify"],
            [],
            prompts.DESCRIBE_CANDIDATE_PROMPT.format(opportunity=query.text, person=_profile_text(user)),
        )


def _coerce_candidates(raw: Any) -> list[Candidate]:
    """Best-effort conversion of a raw search payload into Candidates."""
    if isinstance(raw, str):
        try:
            raw = extract_json(raw)
        except ValueError:
            return []
    if isinstance(raw, dict):
        raw = raw.get("results") or raw.get("candidates") or []
    if not isinstance(raw, list):
        return []
    candidates = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            candidates.append(Candidate(
                name=str(item.get("name") or ""),
                phone=str(item.get("phone") or ""),
                metadata=item.get("metadata", {k: v for k, v in item.items() if k not in ("name", "phone")}),
            ))
        except ValidationError:
            continue
    return candidates
