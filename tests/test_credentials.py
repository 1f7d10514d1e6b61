"""Bearer tokens and payment signatures."""

from datetime import timedelta

import jwt
import pytest

from carryon.domain.entities import utcnow
from carryon.domain.identity import ANONYMOUS, Customer, Driver, System
from carryon.infrastructure.credentials import TokenCodec
from carryon.infrastructure.payments import HmacSignatureVerifier

SECRET = "test-secret"


@pytest.fixture
def codec():
    return TokenCodec(SECRET)


class TestTokenCodec:
    def test_round_trip_keeps_role(self, codec):
        assert codec.resolve(codec.issue(Customer(4))) == Customer(4)
        assert codec.resolve(codec.issue(Driver(9))) == Driver(9)

    def test_missing_token_is_anonymous(self, codec):
        assert codec.resolve(None) is ANONYMOUS
        assert codec.resolve("") is ANONYMOUS

    def test_forged_token_is_anonymous(self, codec):
        forged = TokenCodec("other-secret").issue(Customer(4))
        assert codec.resolve(forged) is ANONYMOUS
        assert codec.resolve("not-a-jwt") is ANONYMOUS

    def test_expired_token_is_anonymous(self, codec):
        past = utcnow() - timedelta(hours=1)
        token = jwt.encode(
            {"sub": "4", "role": "customer", "iat": past, "exp": past}, SECRET, algorithm="HS256"
        )
        assert codec.resolve(token) is ANONYMOUS

    def test_claimed_role_must_match(self, codec):
        token = codec.issue(Customer(4))
        assert codec.resolve(token, role="customer") == Customer(4)
        assert codec.resolve(token, role="driver") is ANONYMOUS
        assert codec.resolve(token, role="admin") is ANONYMOUS

    def test_unknown_role_claim_is_anonymous(self, codec):
        token = jwt.encode({"sub": "4", "role": "system"}, SECRET, algorithm="HS256")
        assert codec.resolve(token) is ANONYMOUS

    def test_only_customers_and_drivers_get_tokens(self, codec):
        with pytest.raises(ValueError):
            codec.issue(System())
        with pytest.raises(ValueError):
            codec.issue(ANONYMOUS)


class TestHmacSignatureVerifier:
    def test_accepts_own_signature(self):
        verifier = HmacSignatureVerifier("key")
        assert verifier.verify("order_1", "pay_1", verifier.sign("order_1", "pay_1"))

    def test_rejects_tampered_fields(self):
        verifier = HmacSignatureVerifier("key")
        signature = verifier.sign("order_1", "pay_1")
        assert not verifier.verify("order_1", "pay_2", signature)
        assert not HmacSignatureVerifier("other").verify("order_1", "pay_1", signature)

    def test_unconfigured_secret_rejects_everything(self):
        verifier = HmacSignatureVerifier("")
        assert not verifier.verify("order_1", "pay_1", verifier.sign("order_1", "pay_1"))
