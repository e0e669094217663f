# paygate/core/license_keys.py
from __future__ import annotations

import hashlib
import hmac
import secrets
from typing import Callable, Optional

from paygate.core.config import settings
from paygate.core.utils import epoch_ms

DIGEST_LENGTH = 16  # 64 bit esadecimali dopo il troncamento


class LicenseKeyCodec:
    """
    Genera chiavi licenza nel formato ``<PRODUCTTYPE>-<HEX16>``.

    La chiave è un HMAC-SHA256 (secret di deployment) calcolato su
    ``userId-productType-timestamp-random``, troncato a 16 caratteri hex.
    L'unicità globale è garantita dal registro licenze (vincolo UNIQUE),
    non dall'hash da solo.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        *,
        clock_ms: Callable[[], int] = epoch_ms,
        random_token: Callable[[], str] = lambda: secrets.token_hex(8),
    ):
        self.secret = secret if secret is not None else settings.LICENSE_KEY_SECRET
        self._clock_ms = clock_ms
        self._random_token = random_token

    def generate(self, user_id: Optional[str], product_type: str) -> str:
        data = f"{user_id}-{product_type}-{self._clock_ms()}-{self._random_token()}"
        digest = hmac.new(self.secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha256).hexdigest()
        return f"{product_type.upper()}-{digest[:DIGEST_LENGTH].upper()}"

    @staticmethod
    def verify_format(license_key: str, product_type: str) -> bool:
        """
        Controllo di FORMATO: il prefisso deve coincidere con product_type.upper().

        Non è una prova di autenticità: l'input dell'HMAC (timestamp, random)
        non viene salvato, quindi il digest non è ricalcolabile. Una chiave
        contraffatta con il prefisso giusto passa questo controllo; la verifica
        autorevole è la lookup nel registro licenze.
        """
        if not license_key or not product_type:
            return False
        prefix, sep, _rest = license_key.partition("-")
        if not sep:
            return False
        return prefix == product_type.upper()
