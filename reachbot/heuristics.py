"""Local fallbacks used when the model's structured output cannot be parsed."""
import re
import json
from typing import Any, Optional

EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
PHONE_RE = re.compile(r"\+?\d[\d\s().-]{6,}\d")
EXPERIENCE_RE = re.compile(r"\b(Work Experience|Professional Experience|Experience)\b", re.IGNORECASE)
EDUCATION_RE = re.compile(r"\b(Education|Bachelor|B\.Sc|Master|MBA|University|College)\b", re.IGNORECASE)
SKILL_KEYWORDS = [
    "JavaScript", "Python", "React", "Node", "AWS", "SQL", "Java", "C++", "management", "marketing",
]
RESUME_SCORE_THRESHOLD = 6
LONG_DOCUMENT_WORDS = 150

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)


def _skill_pattern(keyword: str) -> re.Pattern:
    # \b does not match after a trailing symbol such as the "++" of C++
    tail = r"\b" if keyword[-1].isalnum() else r"(?!\w)"
    return re.compile(r"\b" + re.escape(keyword) + tail, re.IGNORECASE)


_SKILL_PATTERNS = [(k, _skill_pattern(k)) for k in SKILL_KEYWORDS]


def heuristic_classify_document(text: str) -> dict:
    """Score extracted document text for resume signals.

    Returns a dict shaped like DocumentVerdict: is_resume, confidence, reasons, key_fields.
    """
    text = str(text or "")
    score = 0
    reasons = []

    email = EMAIL_RE.search(text)
    phone = PHONE_RE.search(text)
    if email:
        score += 3
        reasons.append("contains email")
    if phone:
        score += 2
        reasons.append("contains phone number")
    if EXPERIENCE_RE.search(text):
        score += 3
        reasons.append("has Experience section")
    if EDUCATION_RE.search(text):
        score += 2
        reasons.append("has Education section")

    skills = [k for k, pattern in _SKILL_PATTERNS if pattern.search(text)]
    if skills:
        score += min(3, len(skills))
        reasons.append(f"matched {len(skills)} skill keywords")

    if len(text.split()) > LONG_DOCUMENT_WORDS:
        score += 1
        reasons.append(f"document length >{LONG_DOCUMENT_WORDS} words")

    return {
        "is_resume": score >= RESUME_SCORE_THRESHOLD,
        "confidence": max(0.25, min(0.9, score / 10)),
        "reasons": reasons,
        "key_fields": {
            "email": email.group(0) if email else None,
            "phone": phone.group(0) if phone else None,
            "name": None,
            "top_skills": skills,
            "years_experience": None,
        },
    }


def _slug_tokens(url: str) -> set[str]:
    path = re.sub(r"^[a-z]+://[^/]+", "", url.lower())
    return {t for t in re.split(r"[^a-z0-9]+", path) if t}


def heuristic_match_identity(name: str, url: str) -> dict:
    """Conservative identity check: every token of a two-plus-token name must appear in the link."""
    tokens = [t for t in re.split(r"[^a-z0-9]+", (name or "").lower()) if t]
    slug = _slug_tokens(url or "")
    if len(tokens) < 2:
        return {"matched": False, "confidence": 0.0, "reasons": ["name too short to verify"], "profile": {}}
    missing = [t for t in tokens if t not in slug]
    if missing:
        return {
            "matched": False,
            "confidence": 0.0,
            "reasons": [f"name token {t!r} not found in link" for t in missing],
            "profile": {},
        }
    return {"matched": True, "confidence": 0.5, "reasons": ["all name tokens appear in link"], "profile": {}}


def parse_qualify_verdict(text: Optional[str]) -> Optional[str]:
    """Reduce a free-text model answer to "qualify", "fail" or None."""
    words = re.findall(r"[a-z]+", (text or "").lower())
    if not words:
        return None
    if words[0] in ("qualify", "qualified", "qualifies"):
        return "qualify"
    if words[0] in ("fail", "failed", "fails"):
        return "fail"
    has_qualify = any(w.startswith("qualif") for w in words)
    has_fail = "fail" in words or "failed" in words
    if has_qualify and not has_fail:
        return "qualify"
    if has_fail and not has_qualify:
        return "fail"
    return None


def extract_json(text: str) -> Any:
    """Parse JSON from model text, tolerating code fences and surrounding prose.

    Raises ValueError when nothing parseable is found.
    """
    cleaned = _FENCE_RE.sub("", str(text or "").strip()).strip("`").strip()
    try:
        return json.loads(cleaned)
    except ValueError:
        pass
    patterns = [_OBJECT_RE, _ARRAY_RE]
    if "[" in cleaned and ("{" not in cleaned or cleaned.index("[") < cleaned.index("{")):
        patterns.reverse()
    for pattern in patterns:
        match = pattern.search(cleaned)
        if match:
            try:
                return json.loads(match.group(0))
            except ValueError:
                continue
    raise ValueError(f"no JSON found in model output: {cleaned[:80]!r}")
