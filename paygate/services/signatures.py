"""Signing and verification primitives for provider requests and webhooks.

Each provider fixes its own authenticity scheme; the functions here
implement them exactly and always compare with :func:`hmac.compare_digest`.
The signer classes wrap them behind one ``sign(params, secret)`` /
``verify(params, secret, received)`` shape so adapters and tests can treat
schemes uniformly.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Any, Mapping

ENVELOPE_SEPARATOR = "###"


def _to_bytes(value: str | bytes) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def _safe_equals(expected: str, received: str | None) -> bool:
    if not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.strip().encode("utf-8"))


# --- HMAC-SHA256 over the raw body ---------------------------------------


def hmac_sha256_hex(secret: str, body: str | bytes) -> str:
    return hmac.new(_to_bytes(secret), _to_bytes(body), hashlib.sha256).hexdigest()


def verify_hmac_sha256(secret: str, body: str | bytes, received: str | None) -> bool:
    return _safe_equals(hmac_sha256_hex(secret, body), received)


# --- SHA-256 checksum over sorted key=value pairs ------------------------


def sorted_params_string(params: Mapping[str, Any]) -> str:
    """Join ``key=value`` pairs in lexicographic key order with ``&``.

    ``None`` values are sent as empty strings, matching how form posts
    arrive back from the provider.
    """

    return "&".join(
        f"{key}={'' if params[key] is None else params[key]}" for key in sorted(params)
    )


def params_checksum(params: Mapping[str, Any], secret: str) -> str:
    return hashlib.sha256(_to_bytes(sorted_params_string(params) + secret)).hexdigest()


def verify_params_checksum(params: Mapping[str, Any], secret: str, received: str | None) -> bool:
    return _safe_equals(params_checksum(params, secret), received)


# --- Base64 JSON envelope with X-VERIFY ----------------------------------


def encode_envelope(payload: Mapping[str, Any]) -> str:
    return base64.b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8")).decode("ascii")


def decode_envelope(encoded: str) -> dict[str, Any]:
    """Decode a base64 JSON envelope; raises ``ValueError`` on malformed input."""

    try:
        decoded = base64.b64decode(encoded, validate=True)
        data = json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError("Malformed base64 envelope") from exc
    if not isinstance(data, dict):
        raise ValueError("Envelope does not contain a JSON object")
    return data


def x_verify(data: str, secret: str, salt_index: str | int) -> str:
    """``sha256(data + secret)###salt_index`` where ``data`` is ``base64 + path``."""

    digest = hashlib.sha256(_to_bytes(data + secret)).hexdigest()
    return f"{digest}{ENVELOPE_SEPARATOR}{salt_index}"


def verify_x_verify(data: str, secret: str, salt_index: str | int, received: str | None) -> bool:
    if not received or ENVELOPE_SEPARATOR not in received:
        return False
    received_hash, received_index = received.strip().rsplit(ENVELOPE_SEPARATOR, 1)
    expected_hash = hashlib.sha256(_to_bytes(data + secret)).hexdigest()
    index_ok = hmac.compare_digest(str(salt_index).encode("utf-8"), received_index.encode("utf-8"))
    return _safe_equals(expected_hash, received_hash) and index_ok


# --- Uniform signer objects ----------------------------------------------


class HmacBodySigner:
    """Signs a raw request body."""

    def sign(self, params: str | bytes, secret: str) -> str:
        return hmac_sha256_hex(secret, params)

    def verify(self, params: str | bytes, secret: str, received: str | None) -> bool:
        return verify_hmac_sha256(secret, params, received)


class SortedParamsSigner:
    """Signs a flat parameter mapping."""

    def sign(self, params: Mapping[str, Any], secret: str) -> str:
        return params_checksum(params, secret)

    def verify(self, params: Mapping[str, Any], secret: str, received: str | None) -> bool:
        return verify_params_checksum(params, secret, received)


@dataclass(frozen=True)
class EnvelopeSigner:
    """Signs a base64 envelope for a given API path; the salt index is echoed, not hashed."""

    path: str
    salt_index: str

    def sign(self, params: str, secret: str) -> str:
        return x_verify(params + self.path, secret, self.salt_index)

    def verify(self, params: str, secret: str, received: str | None) -> bool:
        return verify_x_verify(params + self.path, secret, self.salt_index, received)


__all__ = [
    "ENVELOPE_SEPARATOR",
    "hmac_sha256_hex",
    "verify_hmac_sha256",
    "sorted_params_string",
    "params_checksum",
    "verify_params_checksum",
    "encode_envelope",
    "decode_envelope",
    "x_verify",
    "verify_x_verify",
    "HmacBodySigner",
    "SortedParamsSigner",
    "EnvelopeSigner",
]
