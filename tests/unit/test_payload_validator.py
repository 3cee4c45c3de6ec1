import json

import pytest

from socratic_gateway.guards.payload import (
    Invalid,
    PayloadLimits,
    PayloadValidator,
    Valid,
    ValidationError,
)


def _user(*parts: dict[str, object]) -> dict[str, object]:
    return {"role": "user", "parts": list(parts)}


def _text(text: str) -> dict[str, object]:
    return {"type": "text", "text": text}


def _image(media_type: str = "image/png", data: str = "data:image/png;base64,AAAA") -> dict:
    return {"type": "file", "mediaType": media_type, "url": data}


@pytest.fixture
def validator() -> PayloadValidator:
    return PayloadValidator()


def test_declared_size_over_cap_is_rejected(validator: PayloadValidator) -> None:
    verdict = validator.check_declared_size(str(5 * 1024 * 1024 + 1))
    assert verdict == Invalid(ValidationError.BODY_TOO_LARGE)
    assert verdict.message == "Request body too large"


@pytest.mark.parametrize("header", [None, "", "1024", "not-a-number"])
def test_declared_size_within_cap_or_unparseable_passes(
    validator: PayloadValidator, header: str | None
) -> None:
    assert isinstance(validator.check_declared_size(header), Valid)


def test_parse_body_rejects_invalid_json(validator: PayloadValidator) -> None:
    verdict, body = validator.parse_body(b"{not json")
    assert verdict == Invalid(ValidationError.INVALID_JSON)
    assert body is None


def test_parse_body_rejects_pathologically_nested_json(validator: PayloadValidator) -> None:
    verdict, body = validator.parse_body(b"[" * 200_000 + b"]" * 200_000)
    assert verdict == Invalid(ValidationError.INVALID_JSON)
    assert verdict.message == "Invalid JSON"
    assert body is None


@pytest.mark.parametrize("body", [{}, {"messages": "hi"}, [], "text", None])
def test_messages_must_be_a_list(validator: PayloadValidator, body: object) -> None:
    verdict, payload = validator.validate_request(body)
    assert verdict == Invalid(ValidationError.MESSAGES_REQUIRED)
    assert payload is None


def test_valid_request_carries_model_id(validator: PayloadValidator) -> None:
    verdict, payload = validator.validate_request(
        {"messages": [_user(_text("hello"))], "modelId": "gpt-4o"}
    )
    assert isinstance(verdict, Valid)
    assert payload is not None
    assert payload.model_id == "gpt-4o"

    _, no_model = validator.validate_request({"messages": [], "modelId": 42})
    assert no_model is not None
    assert no_model.model_id == ""


def test_message_count_cap_short_circuits_part_checks(validator: PayloadValidator) -> None:
    messages = [_user(_text("x" * 20_000)) for _ in range(101)]
    assert validator.validate_messages(messages) == Invalid(ValidationError.TOO_MANY_MESSAGES)
    assert validator.validate_messages(messages[:100]) == Invalid(ValidationError.TEXT_TOO_LONG)


def test_text_length_boundary(validator: PayloadValidator) -> None:
    assert isinstance(validator.validate_parts([_text("a" * 10_000)]), Valid)
    verdict = validator.validate_parts([_text("a" * 10_001)])
    assert verdict == Invalid(ValidationError.TEXT_TOO_LONG)
    assert verdict.message == "Text too long (max 10000 chars)"


@pytest.mark.parametrize("media_type", ["application/pdf", "image/svg+xml", None, ["image/png"]])
def test_disallowed_or_missing_media_types(validator: PayloadValidator, media_type: object) -> None:
    part = {"type": "file", "mediaType": media_type, "url": "https://example.com/a"}
    assert validator.validate_parts([part]) == Invalid(ValidationError.FILE_TYPE_NOT_ALLOWED)


def test_file_data_size_cap() -> None:
    validator = PayloadValidator(PayloadLimits(max_file_data_size=10))
    assert isinstance(validator.validate_parts([_image(data="x" * 10)]), Valid)
    assert validator.validate_parts([_image(data="x" * 11)]) == Invalid(
        ValidationError.FILE_TOO_LARGE
    )


def test_files_per_message_cap(validator: PayloadValidator) -> None:
    assert isinstance(validator.validate_parts([_image() for _ in range(4)]), Valid)
    verdict = validator.validate_parts([_image() for _ in range(5)])
    assert verdict == Invalid(ValidationError.TOO_MANY_FILES)
    assert verdict.message == "Too many files per message (max 4)"


def test_limit_messages_report_configured_caps() -> None:
    validator = PayloadValidator(
        PayloadLimits(max_message_count=2, max_text_length=5, max_files_per_message=1)
    )

    too_many = validator.validate_messages([_user(_text("hi")) for _ in range(3)])
    assert too_many == Invalid(ValidationError.TOO_MANY_MESSAGES)
    assert too_many.message == "Too many messages (max 2)"

    too_long = validator.validate_parts([_text("abcdef")])
    assert too_long.message == "Text too long (max 5 chars)"

    too_many_files = validator.validate_parts([_image(), _image()])
    assert too_many_files.message == "Too many files per message (max 1)"


def test_file_cap_is_per_message_not_per_request(validator: PayloadValidator) -> None:
    messages = [_user(*[_image() for _ in range(4)]) for _ in range(3)]
    assert isinstance(validator.validate_messages(messages), Valid)


def test_unknown_parts_and_malformed_messages_are_skipped(validator: PayloadValidator) -> None:
    messages = [
        "not an object",
        {"role": "user"},
        {"role": "user", "parts": "nope"},
        _user({"type": "reasoning", "text": "x" * 50_000}, {"type": "step-start"}),
    ]
    assert isinstance(validator.validate_messages(messages), Valid)


def test_parts_must_be_an_array(validator: PayloadValidator) -> None:
    assert validator.validate_parts({"type": "text"}) == Invalid(ValidationError.PARTS_NOT_ARRAY)


def test_first_violation_wins(validator: PayloadValidator) -> None:
    parts = [_image("application/pdf"), _text("a" * 10_001)]
    assert validator.validate_parts(parts) == Invalid(ValidationError.FILE_TYPE_NOT_ALLOWED)


def test_rejection_messages_never_echo_input(validator: PayloadValidator) -> None:
    secret = "sk-do-not-echo"
    body = json.dumps({"messages": [_user(_text(secret * 1000))]}).encode()
    verdict, parsed = validator.parse_body(body)
    assert isinstance(verdict, Valid)
    verdict, _ = validator.validate_request(parsed)
    assert isinstance(verdict, Invalid)
    assert secret not in verdict.message
