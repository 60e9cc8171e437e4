import pytest

from reachbot.heuristics import (
    extract_json,
    heuristic_classify_document,
    heuristic_match_identity,
    parse_qualify_verdict,
)

RESUME_TEXT = """\
Jane Doe
jane.doe@example.com | +1 (555) 123-4567

Professional Experience
Senior Engineer, Acme Corp 2018-2024. Built Python and AWS services, led SQL migrations.

Education
B.Sc Computer Science, State University
"""


def test_resume_scores_above_threshold():
    result = heuristic_classify_document(RESUME_TEXT)
    assert result["is_resume"] is True
    # 3 email + 2 phone + 3 experience + 2 education + 3 skills
    assert result["confidence"] == pytest.approx(0.9)
    assert result["key_fields"]["email"] == "jane.doe@example.com"
    assert result["key_fields"]["phone"].startswith("+1")
    assert set(result["key_fields"]["top_skills"]) == {"Python", "AWS", "SQL"}
    assert result["key_fields"]["name"] is None


def test_plain_text_is_not_a_resume():
    result = heuristic_classify_document("Invoice for October. Total due: see attached. Thanks for your business.")
    assert result["is_resume"] is False
    assert result["confidence"] == pytest.approx(0.25)
    assert result["key_fields"]["email"] is None
    assert result["key_fields"]["phone"] is None


def test_skill_points_are_capped_at_three():
    text = "JavaScript Python React Node AWS SQL"
    result = heuristic_classify_document(text)
    assert len(result["key_fields"]["top_skills"]) == 6
    assert result["is_resume"] is False
    assert result["confidence"] == pytest.approx(0.3)


def test_cplusplus_keyword_matches():
    result = heuristic_classify_document("Skilled in C++ and Java.")
    assert "C++" in result["key_fields"]["top_skills"]
    assert "Java" in result["key_fields"]["top_skills"]
    assert "JavaScript" not in result["key_fields"]["top_skills"]


def test_long_documents_get_a_point():
    text = "Experience " + "word " * 160
    # 3 experience + 1 length
    assert heuristic_classify_document(text)["confidence"] == pytest.approx(0.4)


def test_none_text_is_handled():
    assert heuristic_classify_document(None)["is_resume"] is False


def test_identity_match_requires_all_name_tokens():
    assert heuristic_match_identity("Jane Doe", "https://www.linkedin.com/in/jane-doe-42")["matched"] is True
    assert heuristic_match_identity("Jane Doe", "https://www.linkedin.com/in/john-doe")["matched"] is False


def test_identity_match_refuses_single_token_names():
    result = heuristic_match_identity("Jane", "https://www.linkedin.com/in/jane")
    assert result["matched"] is False


def test_identity_match_ignores_host():
    # "linkedin" in the host must not count as a name token
    assert heuristic_match_identity("Linked In", "https://www.linkedin.com/in/someone")["matched"] is False


@pytest.mark.parametrize("text,expected", [
    ("qualify", "qualify"),
    ("Qualify.", "qualify"),
    ("  FAIL\n", "fail"),
    ("The answer is: fail", "fail"),
    ("they might qualify or fail", None),
    ("I think they qualified for it", "qualify"),
    ("undecided", None),
    ("", None),
    (None, None),
])
def test_parse_qualify_verdict(text, expected):
    assert parse_qualify_verdict(text) == expected


def test_extract_json_strips_fences():
    assert extract_json('```json\n{"is_resume": true}\n```') == {"is_resume": True}


def test_extract_json_finds_object_in_prose():
    assert extract_json('Sure! {"a": [1, 2]} hope that helps') == {"a": [1, 2]}


def test_extract_json_finds_array_in_prose():
    assert extract_json('Here: [{"name": "A"}] done') == [{"name": "A"}]


def test_extract_json_raises_on_garbage():
    with pytest.raises(ValueError):
        extract_json("no json here")
