"""HMAC signing for dispatcher callbacks."""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
from typing import Any

SIGNATURE_HEADER = "X-Gemmie-Signature"


def encode_body(payload: dict[str, Any]) -> bytes:
  """Serialize a payload exactly once so the signed bytes are the delivered bytes."""
  return json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")


def sign_body(secret: str, body: bytes) -> str:
  return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str | None, body: bytes, signature: str | None) -> bool:
  """Constant-time check of a callback signature; deny when unconfigured."""
  if not secret or not signature:
    return False
  return secrets.compare_digest(sign_body(secret, body).encode("utf-8"), signature.strip().lower().encode("utf-8"))


def require_secret(secret: str | None) -> str:
  if not secret:
    raise RuntimeError("Task secret not configured (GEMMIE_TASK_SECRET).")
  return secret
