"""Unit tests for API exception sanitization behavior."""

from __future__ import annotations

from app.core.exceptions import _error_payload, _sanitize_validation_errors


def test_sanitize_validation_errors_removes_input_and_serializes_exception_ctx() -> None:
  """Ensure validation errors stay JSON-serializable and redact raw request payloads."""
  errors = [{"type": "value_error", "loc": ("body", "userName"), "msg": "Value error, userName must not be blank", "input": "   ", "ctx": {"error": ValueError("userName must not be blank"), "input": "   "}}]
  sanitized = _sanitize_validation_errors(errors)
  assert "input" not in sanitized[0]
  assert sanitized[0]["ctx"]["error"] == "ValueError: userName must not be blank"
  assert "input" not in sanitized[0]["ctx"]
  assert sanitized[0]["loc"] == ["body", "userName"]


def test_error_payload_carries_request_id() -> None:
  assert _error_payload("Invalid signature.", request_id="abc") == {"detail": "Invalid signature.", "requestId": "abc"}
  assert _error_payload("Invalid signature.") == {"detail": "Invalid signature."}
