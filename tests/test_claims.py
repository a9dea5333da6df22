"""Tests for token ids and claim (de)serialization."""

import pytest

from todoauth.service import claims as claims_module
from todoauth.service.claims import ExtendedClaims, PrimaryClaims, TokenIdFactory
from todoauth.service.errors import TokenInvalidFormatError, TokenMissingClaimsError

_CROCKFORD = set("0123456789ABCDEFGHJKMNPQRSTVWXYZ")
_FIXED_NS = 1_700_000_000_123 * 1_000_000


class TestTokenIdFactory:
    def test_ids_are_26_crockford_characters(self):
        new_id = TokenIdFactory()
        token_id = new_id()
        assert len(token_id) == 26
        assert set(token_id) <= _CROCKFORD

    def test_ids_within_one_millisecond_strictly_increase(self):
        new_id = TokenIdFactory(clock=lambda: _FIXED_NS)
        ids = [new_id() for _ in range(50)]
        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)

    def test_ids_follow_clock_order(self):
        ticks = iter([_FIXED_NS, _FIXED_NS + 5_000_000])
        new_id = TokenIdFactory(clock=lambda: next(ticks))
        first, second = new_id(), new_id()
        assert first < second
        # leading 10 characters carry the millisecond timestamp
        assert first[:10] < second[:10]

    def test_random_overflow_carries_into_timestamp(self, monkeypatch):
        monkeypatch.setattr(claims_module.secrets, "randbits", lambda bits: (1 << bits) - 1)
        new_id = TokenIdFactory(clock=lambda: _FIXED_NS)
        ids = [new_id() for _ in range(3)]
        assert ids == sorted(ids)
        assert len(set(ids)) == 3


class TestPrimaryClaims:
    def test_new_sets_window_and_defaults_family_to_own_id(self):
        claims = PrimaryClaims.new(
            "user-1",
            jti="J0",
            rjti=None,
            issued_at=1_000,
            ttl=60,
            issuer="todoauth",
            audience="todoauth:refresh",
        )
        assert claims.rjti == "J0"
        assert claims.iat == claims.nbf == 1_000
        assert claims.exp == 1_060

    def test_payload_round_trip(self):
        claims = PrimaryClaims.new(
            "user-1",
            jti="K0",
            rjti="J0",
            issued_at=1_000,
            ttl=60,
            issuer="todoauth",
            audience="todoauth:access",
        )
        assert PrimaryClaims.from_payload(claims.to_payload()) == claims

    def test_missing_claims_are_listed(self):
        payload = {"sub": "user-1", "jti": "K0", "exp": 2, "iat": 1, "nbf": 1}
        with pytest.raises(TokenMissingClaimsError) as excinfo:
            PrimaryClaims.from_payload(payload)
        assert set(excinfo.value.detail["missing"]) == {"iss", "aud", "rjti"}
        assert excinfo.value.category == "missing_claims"

    def test_wrong_claim_type_is_invalid_format(self):
        payload = {
            "sub": "user-1",
            "jti": "K0",
            "rjti": "J0",
            "exp": "soon",
            "iat": 1,
            "nbf": 1,
            "iss": "todoauth",
            "aud": "todoauth:access",
        }
        with pytest.raises(TokenInvalidFormatError) as excinfo:
            PrimaryClaims.from_payload(payload)
        assert excinfo.value.detail == {"claim": "exp"}

    def test_boolean_is_not_a_timestamp(self):
        payload = {
            "sub": "user-1",
            "jti": "K0",
            "rjti": "J0",
            "exp": True,
            "iat": 1,
            "nbf": 1,
            "iss": "todoauth",
            "aud": "todoauth:access",
        }
        with pytest.raises(TokenInvalidFormatError):
            PrimaryClaims.from_payload(payload)


class TestExtendedClaims:
    def test_family_id_is_own_id(self):
        claims = ExtendedClaims.new(
            "user-1",
            jti="S0",
            issued_at=1_000,
            ttl=60,
            issuer="todoauth",
            audience="todoauth:session",
            email="a@example.com",
            name="Ada",
            photo_url="https://example.com/ada.svg",
        )
        assert claims.rjti == "S0"
        payload = claims.to_payload()
        assert "rjti" not in payload
        assert payload["photo_url"] == "https://example.com/ada.svg"
