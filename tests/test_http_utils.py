from common.http_utils import (
    extract_error_code,
    extract_error_message,
    is_valid_api_key,
    sanitize_error_message,
)


def test_is_valid_api_key_rejects_common_placeholders_and_short_values():
    assert is_valid_api_key("") is False
    assert is_valid_api_key("   ") is False
    assert is_valid_api_key("short") is False
    assert is_valid_api_key("demo") is False
    assert is_valid_api_key("YOUR_API_KEY_HERE") is False


def test_is_valid_api_key_accepts_reasonable_length_keys():
    assert is_valid_api_key("a" * 10) is True
    assert is_valid_api_key(" sk-1234567890 ") is True


def test_sanitize_error_message_redacts_common_secret_shapes_and_urls():
    raw = (
        "request failed: https://bridge-abc.svc.pinecone.io/query?x=1 "
        "token=0123456789abcdef0123456789abcdef "
        "api_key=sk-THIS_SHOULD_NOT_LEAK "
        "Authorization: Bearer abc.def.ghi"
    )
    sanitized = sanitize_error_message(raw)

    assert "https://" not in sanitized
    assert "[URL_REDACTED]" in sanitized

    # Long key-like tokens should not survive.
    assert "0123456789abcdef0123456789abcdef" not in sanitized
    assert "[KEY_REDACTED]" in sanitized

    assert "api_key=[REDACTED]" in sanitized
    assert "Bearer [REDACTED]" in sanitized


def test_sanitize_error_message_limits_length():
    sanitized = sanitize_error_message("X" * 2000)
    assert len(sanitized) <= 303


def test_extract_error_message_handles_vendor_shapes():
    assert extract_error_message({"error": {"message": "bad key"}}) == "bad key"
    assert extract_error_message({"error": "plain"}) == "plain"
    assert extract_error_message({"message": "dashscope says no"}) == "dashscope says no"
    assert extract_error_message(None, fallback="request failed") == "request failed"


def test_extract_error_code_prefers_nested_code():
    assert extract_error_code({"error": {"code": "insufficient_quota", "type": "x"}}) == "insufficient_quota"
    assert extract_error_code({"error": {"status": "RESOURCE_EXHAUSTED"}}) == "resource_exhausted"
    assert extract_error_code({"code": "Throttling"}) == "throttling"
    assert extract_error_code([]) == ""
