"""
Payment-gateway collaborator.

Gateway checkouts return ``(gateway_order_id, payment_id, signature)``
where ``signature = HMAC_SHA256(secret, "<gateway_order_id>|<payment_id>")``.
The core only asks "is this genuine?" before marking an order paid.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Protocol


class SignatureVerifier(Protocol):
    def verify(self, gateway_order_id: str, payment_id: str, signature: str) -> bool: ...


class HmacSignatureVerifier:
    def __init__(self, secret: str):
        self.secret = secret.encode()

    def sign(self, gateway_order_id: str, payment_id: str) -> str:
        message = f"{gateway_order_id}|{payment_id}".encode()
        return hmac.new(self.secret, message, hashlib.sha256).hexdigest()

    def verify(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        if not self.secret:
            return False
        return hmac.compare_digest(self.sign(gateway_order_id, payment_id), signature)
