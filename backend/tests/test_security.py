"""Tests for security utilities (app/utils/security.py).

Tests log and response hygiene:
- Log injection prevention via sanitize_log_message()
- Remote error body truncation
- Sensitive data masking for logs
"""

from app.utils.security import (
    MAX_REMOTE_BODY_LENGTH,
    mask_sensitive,
    sanitize_log_message,
    truncate_remote_body,
)


class TestSanitizeLogMessage:
    """Test suite for log injection prevention."""

    def test_removes_newlines(self):
        """Test sanitize_log_message() removes newline characters."""
        assert sanitize_log_message("pve1\nmalicious\nlog") == "pve1maliciouslog"

    def test_removes_carriage_returns(self):
        """Test sanitize_log_message() removes carriage returns."""
        assert sanitize_log_message("User: admin\r\nPassword: secret") == "User: adminPassword: secret"

    def test_removes_control_characters(self):
        """Test sanitize_log_message() removes control characters."""
        assert sanitize_log_message("text\x00null\x01control\x1fmore\x7f") == "textnullcontrolmore"

    def test_preserves_normal_text(self):
        """Test ordinary text is unchanged."""
        message = "Node pve1 returned HTTP 500: internal error"
        assert sanitize_log_message(message) == message

    def test_handles_none(self):
        """Test None becomes an empty string."""
        assert sanitize_log_message(None) == ""

    def test_handles_bytes(self):
        """Test bytes are decoded before sanitizing."""
        assert sanitize_log_message(b"line1\nline2") == "line1line2"

    def test_handles_numbers(self):
        """Test numbers are converted to strings."""
        assert sanitize_log_message(8006) == "8006"


class TestTruncateRemoteBody:
    """Test suite for truncate_remote_body()."""

    def test_short_body_unchanged(self):
        """Test a short body is only sanitized."""
        assert truncate_remote_body("permission denied\n") == "permission denied"

    def test_long_body_truncated(self):
        """Test a long body is cut to the limit plus an ellipsis."""
        body = "<html>" + "x" * 2000

        truncated = truncate_remote_body(body)

        assert len(truncated) == MAX_REMOTE_BODY_LENGTH + 3
        assert truncated.endswith("...")

    def test_custom_limit(self):
        """Test a custom limit is honoured."""
        assert truncate_remote_body("abcdefgh", limit=3) == "abc..."

    def test_none_body(self):
        """Test None becomes an empty string."""
        assert truncate_remote_body(None) == ""


class TestMaskSensitive:
    """Test suite for sensitive data masking."""

    def test_masks_api_key(self):
        """Test mask_sensitive() shows last 4 characters of API key."""
        assert mask_sensitive("hz_live_1234567890abcdef") == "***cdef"

    def test_custom_visible_chars(self):
        """Test mask_sensitive() with custom visible character count."""
        assert mask_sensitive("1234567890", visible_chars=2) == "***90"

    def test_short_value_fully_masked(self):
        """Test values not longer than visible_chars are fully masked."""
        assert mask_sensitive("abc") == "***"

    def test_empty_values(self):
        """Test None and empty string are masked."""
        assert mask_sensitive(None) == "***"
        assert mask_sensitive("") == "***"

    def test_custom_mask_char(self):
        """Test mask_sensitive() with custom mask character."""
        assert mask_sensitive("secret-token", mask_char="#") == "###oken"
