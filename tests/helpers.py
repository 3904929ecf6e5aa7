"""Shared test helpers for bearer tokens and service configuration."""

from __future__ import annotations

import base64
import json
import time
from pathlib import Path
from typing import Any

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from joserfc import jws
from joserfc.errors import JoseError
from joserfc.jwk import OKPKey

STATIC_REVIEW = "Looks complete"


def generate_private_key() -> Ed25519PrivateKey:
    """Generate an Ed25519 signing key."""
    return Ed25519PrivateKey.generate()


def make_bearer_token(
    private_key: Ed25519PrivateKey,
    account_id: str,
    payload: dict[str, Any] | None = None,
) -> str:
    """Create a real JWS compact token for ``account_id``, like the Identity service issues."""
    raw_private = private_key.private_bytes_raw()
    raw_public = private_key.public_key().public_bytes_raw()
    jwk_dict = {
        "kty": "OKP",
        "crv": "Ed25519",
        "d": base64.urlsafe_b64encode(raw_private).rstrip(b"=").decode(),
        "x": base64.urlsafe_b64encode(raw_public).rstrip(b"=").decode(),
    }
    key = OKPKey.import_key(jwk_dict)
    protected = {"alg": "EdDSA", "kid": account_id}
    body = {"sub": account_id, "iat": int(time.time())}
    if payload is not None:
        body.update(payload)
    payload_bytes = json.dumps(body, separators=(",", ":"), sort_keys=True).encode()
    return jws.serialize_compact(protected, payload_bytes, key, algorithms=["EdDSA"])


def extract_kid(token: str) -> str:
    """Extract the kid (account id) from a JWS compact token header."""
    header_b64 = token.split(".", maxsplit=1)[0]
    padded = header_b64 + "=" * (-len(header_b64) % 4)
    header = json.loads(base64.urlsafe_b64decode(padded))
    return str(header.get("kid", "unknown"))


def tamper_token(token: str) -> str:
    """Alter the payload of a JWS after signing (creates invalid signature)."""
    parts = token.split(".")
    payload_bytes = base64.urlsafe_b64decode(parts[1] + "=" * (-len(parts[1]) % 4))
    payload = json.loads(payload_bytes)
    payload["_tampered"] = True
    new_payload = base64.urlsafe_b64encode(json.dumps(payload).encode()).rstrip(b"=").decode()
    return f"{parts[0]}.{new_payload}.{parts[2]}"


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def write_config(directory: Path, *, oracle_provider: str = "static", max_body_size: int = 1048576) -> Path:
    """Write a complete service config rooted in ``directory`` and return its path."""
    config_content = f"""\
service:
  name: "credbuzz"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{directory / "logs"}"
database:
  path: "{directory / "credbuzz.db"}"
identity:
  base_url: "http://localhost:8001"
  verify_path: "/agents/verify-jws"
  timeout_seconds: 10
mailer:
  base_url: "http://localhost:8025"
  send_path: "/messages"
  sender: "no-reply@credbuzz.test"
  timeout_seconds: 10
oracle:
  provider: "{oracle_provider}"
  model: "gpt-4o-mini"
  temperature: 0.2
  timeout_seconds: 5
ledger:
  starting_balance: 50
blobs:
  storage_path: "{directory / "uploads"}"
  max_file_size: 1024
  max_files_per_submission: 3
otp:
  ttl_seconds: 600
  code_length: 6
request:
  max_body_size: {max_body_size}
"""
    config_path = directory / "config.yaml"
    config_path.write_text(config_content)
    return config_path


def verify_bearer_token(token: str, public_key: Ed25519PublicKey) -> bool:
    """Check a token's signature the way the Identity service does."""
    raw_public = public_key.public_bytes_raw()
    jwk_dict = {
        "kty": "OKP",
        "crv": "Ed25519",
        "x": base64.urlsafe_b64encode(raw_public).rstrip(b"=").decode(),
    }
    try:
        jws.deserialize_compact(token, OKPKey.import_key(jwk_dict), algorithms=["EdDSA"])
    except (JoseError, ValueError):
        return False
    return True
