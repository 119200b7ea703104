import json

import pytest

from crobot.findings import (
    FindingsError,
    ReviewFinding,
    extract_findings,
    parse_findings,
)

VALID_FINDING = (
    '{"path":"src/auth.go","line":10,"side":"new","severity":"warning",'
    '"category":"security","message":"Token not validated","fingerprint":""}'
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("[" + VALID_FINDING + "]", 1),
        ("[]", 0),
        ("```json\n[" + VALID_FINDING + "]\n```", 1),
        ("```\n[" + VALID_FINDING + "]\n```", 1),
        (
            "Here are my findings:\n```json\n[" + VALID_FINDING + "]\n```\nLet me explain the issue.",
            1,
        ),
        (
            """[
                {"path":"a.go","line":1,"side":"new","severity":"error","category":"bug","message":"null deref","fingerprint":""},
                {"path":"b.go","line":5,"side":"new","severity":"info","category":"style","message":"unused var","fingerprint":""}
            ]""",
            2,
        ),
        ("I found the following issues:\n[" + VALID_FINDING + "]\nThat's all.", 1),
        ("No issues found:\n```json\n[]\n```", 0),
        (
            "Here's some data:\n```json\n{\"not\": \"an array\"}\n```\n\nFindings:\n```json\n["
            + VALID_FINDING
            + "]\n```",
            1,
        ),
        ("  \n\n  [" + VALID_FINDING + "]  \n\n  ", 1),
    ],
)
def test_extract_findings_counts(text, expected):
    assert len(extract_findings(text)) == expected


@pytest.mark.parametrize(
    "text",
    [
        "I found no issues with this code. Everything looks good.",
        '[{"path": "broken}]',
        "",
        "   \n\t  ",
        "```json\n{not valid json}\n```",
    ],
)
def test_extract_findings_errors(text):
    with pytest.raises(FindingsError, match="extract findings"):
        extract_findings(text)


def test_extract_findings_values():
    findings = extract_findings("[" + VALID_FINDING + "]")
    assert findings == [
        ReviewFinding(
            path="src/auth.go",
            line=10,
            side="new",
            severity="warning",
            category="security",
            message="Token not validated",
            fingerprint="",
        )
    ]


def test_error_messages_distinguish_cases():
    with pytest.raises(FindingsError, match="empty output"):
        extract_findings("  ")
    with pytest.raises(FindingsError, match="found 1 code fence"):
        extract_findings("```json\n{not valid json}\n```")
    with pytest.raises(FindingsError, match="JSON-like content"):
        extract_findings("not valid json [[[")
    with pytest.raises(FindingsError, match="no JSON array found"):
        extract_findings("nothing here")


def test_bare_array_with_brackets_inside_strings():
    text = 'Note [draft]: [{"path":"x]y.go","line":3,"message":"a [b] c"}] end'
    findings = extract_findings(text)
    assert [f.path for f in findings] == ["x]y.go"]
    assert findings[0].message == "a [b] c"


def test_parse_findings_rejects_non_array():
    with pytest.raises(FindingsError):
        parse_findings('{"path": "a.go"}')


def test_parse_findings_rejects_wrong_types():
    with pytest.raises(FindingsError):
        parse_findings('[{"path": 5}]')
    with pytest.raises(FindingsError):
        parse_findings('[{"line": "ten"}]')
    with pytest.raises(FindingsError):
        parse_findings("[1]")


def test_parse_findings_ignores_unknown_keys():
    findings = parse_findings(b'[{"path": "a.go", "extra": true}]')
    assert findings == [ReviewFinding(path="a.go")]


def test_round_trip():
    findings = extract_findings("[" + VALID_FINDING + "]")
    data = json.dumps([f.to_dict() for f in findings])
    assert parse_findings(data) == findings


def test_to_dict_keys():
    finding = ReviewFinding(path="auth.go", line=5, side="new", severity="error",
                            category="security", message="Token leak")
    assert finding.to_dict() == {
        "path": "auth.go",
        "line": 5,
        "side": "new",
        "severity": "error",
        "category": "security",
        "message": "Token leak",
        "fingerprint": "",
    }