"""
Request shape tests — the Received → Validated step.

Run: pytest tests/ -v
"""

from __future__ import annotations

from typing import Any

import pytest

from regulation_validator.exceptions import RequestShapeError
from regulation_validator.request_shape import (
    is_valid_semantic_version,
    parse_batch_request,
    parse_validation_request,
    validate_pagination,
)


def _make_body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "regulationId": "R1",
        "regulationVersion": "1.2.3",
        "regulationContent": {"text": "Records shall be retained."},
    }
    body.update(overrides)
    return body


def _fields(exc: RequestShapeError) -> set[str]:
    return {entry["field"] for entry in exc.details}


# ═══════════════════════════════════════════════════════════════════════
# SEMANTIC VERSION
# ═══════════════════════════════════════════════════════════════════════


class TestSemanticVersion:
    @pytest.mark.parametrize("version", ["1.2.3", "0.0.0", "10.20.30", "2018.0.0"])
    def test_valid(self, version):
        assert is_valid_semantic_version(version)

    @pytest.mark.parametrize("version", ["1.2", "1.2.3.4", "v1.2.3", "1.2.x", "", None, 123])
    def test_invalid(self, version):
        assert not is_valid_semantic_version(version)


# ═══════════════════════════════════════════════════════════════════════
# SINGLE REQUEST
# ═══════════════════════════════════════════════════════════════════════


class TestParseValidationRequest:
    def test_minimal_body_gets_defaults(self):
        request = parse_validation_request(_make_body())
        assert request.regulation_id == "R1"
        assert request.requested_level == 1
        assert request.options.require_certainty == 1
        assert request.options.include_evidence is True
        assert request.options.check_version_changes is False
        assert request.content.metadata == {}

    def test_empty_text_is_allowed(self):
        request = parse_validation_request(_make_body(regulationContent={"text": ""}))
        assert request.content.text == ""

    def test_aliases(self):
        body = _make_body(requestedLevel=3, content={"text": "t"})
        del body["regulationContent"]
        request = parse_validation_request(body)
        assert request.requested_level == 3
        assert request.content.text == "t"

    def test_full_options(self):
        request = parse_validation_request(_make_body(
            validationLevel=2,
            options={"requireCertainty": 4, "includeEvidence": False, "checkVersionChanges": True},
        ))
        assert request.requested_level == 2
        assert request.options.require_certainty == 4
        assert request.options.include_evidence is False
        assert request.options.check_version_changes is True

    def test_missing_fields_all_reported(self):
        with pytest.raises(RequestShapeError) as exc_info:
            parse_validation_request({"regulationContent": {"text": "t"}})
        exc = exc_info.value
        assert exc.code == "INVALID_REQUEST"
        assert exc.status_code == 400
        assert _fields(exc) == {"regulationId", "regulationVersion"}
        messages = {e["field"]: e["message"] for e in exc.details}
        assert messages["regulationId"] == "Regulation ID is required"

    def test_missing_content(self):
        body = _make_body()
        del body["regulationContent"]
        with pytest.raises(RequestShapeError) as exc_info:
            parse_validation_request(body)
        assert len(exc_info.value.details) == 1

    def test_bad_semver(self):
        with pytest.raises(RequestShapeError) as exc_info:
            parse_validation_request(_make_body(regulationVersion="1.2"))
        assert exc_info.value.details == [{
            "field": "regulationVersion",
            "message": "Regulation version must be in semantic versioning format (e.g., 1.2.3)",
        }]

    @pytest.mark.parametrize("level", [0, 4, "2", 1.5])
    def test_level_out_of_range(self, level):
        with pytest.raises(RequestShapeError) as exc_info:
            parse_validation_request(_make_body(validationLevel=level))
        assert _fields(exc_info.value) == {"validationLevel"}

    @pytest.mark.parametrize("certainty", [0, 6])
    def test_require_certainty_out_of_range(self, certainty):
        with pytest.raises(RequestShapeError) as exc_info:
            parse_validation_request(_make_body(options={"requireCertainty": certainty}))
        assert exc_info.value.details == [{
            "field": "options.requireCertainty",
            "message": "Required certainty must be between 1 and 5",
        }]

    def test_text_must_be_string(self):
        with pytest.raises(RequestShapeError) as exc_info:
            parse_validation_request(_make_body(regulationContent={"text": 42}))
        assert _fields(exc_info.value) == {"regulationContent.text"}

    @pytest.mark.parametrize("body", [None, [], "R1"])
    def test_non_object_body(self, body):
        with pytest.raises(RequestShapeError) as exc_info:
            parse_validation_request(body)
        assert _fields(exc_info.value) == {"request"}


# ═══════════════════════════════════════════════════════════════════════
# BATCH ENVELOPE
# ═══════════════════════════════════════════════════════════════════════


class TestParseBatchRequest:
    def test_entries_stay_raw(self):
        batch = parse_batch_request({"regulations": [{"anything": True}, _make_body()]}, 50)
        assert len(batch.regulations) == 2
        assert batch.regulations[0] == {"anything": True}

    def test_shared_options(self):
        batch = parse_batch_request(
            {"regulations": [_make_body()], "options": {"requireCertainty": 3}}, 50
        )
        assert batch.options.require_certainty == 3

    def test_empty_list_rejected(self):
        with pytest.raises(RequestShapeError) as exc_info:
            parse_batch_request({"regulations": []}, 50)
        assert exc_info.value.details[0] == {
            "field": "regulations",
            "message": "Regulations must be a non-empty array",
        }

    def test_missing_list_rejected(self):
        with pytest.raises(RequestShapeError):
            parse_batch_request({}, 50)

    def test_too_many_rejected(self):
        with pytest.raises(RequestShapeError) as exc_info:
            parse_batch_request({"regulations": [_make_body()] * 3}, 2)
        assert exc_info.value.details == [{
            "field": "regulations",
            "message": "Batch size cannot exceed 2 regulations",
        }]

    def test_bad_shared_options_rejected(self):
        with pytest.raises(RequestShapeError):
            parse_batch_request({"regulations": [_make_body()], "options": {"requireCertainty": 9}}, 50)


# ═══════════════════════════════════════════════════════════════════════
# PAGINATION
# ═══════════════════════════════════════════════════════════════════════


class TestPagination:
    def test_parses_strings(self):
        assert validate_pagination("2", "10") == (2, 10)

    def test_limit_capped(self):
        assert validate_pagination(1, 500) == (1, 100)

    @pytest.mark.parametrize("page, limit", [(0, 10), (1, 0), (-1, 5), ("x", 10), (1, None)])
    def test_invalid(self, page, limit):
        with pytest.raises(RequestShapeError) as exc_info:
            validate_pagination(page, limit)
        assert exc_info.value.code == "INVALID_PARAMETERS"
