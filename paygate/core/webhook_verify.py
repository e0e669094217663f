# paygate/core/webhook_verify.py
from __future__ import annotations

import hashlib
import hmac
from typing import Optional, Tuple

# Devono combaciare con quelli usati dal provider
DEFAULT_HEADER_SIG = "X-Provider-Signature"
LEGACY_HEADER_SIG = "X-Fngs-Signature"
DEFAULT_ALGO = "sha256"
SIGNATURE_PREFIX = "sha256_"


def compute_signature(secret: str, body_bytes: bytes, algo: str = DEFAULT_ALGO) -> str:
    """HMAC esadecimale del body grezzo (nessuna ri-serializzazione del JSON)."""
    algo = algo.lower()
    if not hasattr(hashlib, algo):
        raise ValueError(f"Unsupported HMAC algo: {algo}")
    return hmac.new(secret.encode("utf-8"), body_bytes, getattr(hashlib, algo)).hexdigest()


def strip_signature_prefix(value: str) -> str:
    """Il provider invia 'sha256_<hex>': rimuove il prefisso se presente."""
    value = value.strip().strip('"').strip("'")
    if value.startswith(SIGNATURE_PREFIX):
        value = value[len(SIGNATURE_PREFIX):]
    return value.lower()


def verify_provider_signature(
    body_bytes: bytes,
    signature: Optional[str],
    secret: str,
    algo: str = DEFAULT_ALGO,
) -> Tuple[bool, Optional[str]]:
    """
    Verifica la firma HMAC di un webhook del provider.

    Ritorna:
      (ok: bool, error: Optional[str])
    """
    if not secret:
        return False, "webhook secret not configured"
    if not signature:
        return False, "missing signature"

    received = strip_signature_prefix(signature)
    expected = compute_signature(secret, body_bytes, algo=algo)

    if not hmac.compare_digest(received, expected):
        return False, "signature mismatch"
    return True, None


def pick_signature(headers, header_name: str = DEFAULT_HEADER_SIG) -> Optional[str]:
    """Header configurato, poi quello storico del provider."""
    return headers.get(header_name) or headers.get(LEGACY_HEADER_SIG)
