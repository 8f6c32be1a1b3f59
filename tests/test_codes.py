# Tests for authorization code issuance, PKCE and one-time redemption.
# Created: 2026-02-20

from concurrent.futures import ThreadPoolExecutor

import pytest

from mcpauth.oauth2.codes import (
    AuthorizationCodeService,
    RedeemFailure,
    compute_code_challenge,
    verify_pkce,
)

REDIRECT = "https://client.example/callback"


@pytest.fixture
def codes(storage, clock):
    return AuthorizationCodeService(storage, clock=clock)


def _issue(codes, challenge, **overrides):
    params = {
        "client_id": "client-1",
        "redirect_uri": REDIRECT,
        "code_challenge": challenge,
        "code_challenge_method": "S256",
        "scope": "mcp:read",
        "user_id": "42",
        "org_id": "7",
        "resource": "https://api.example/mcp/api",
    }
    params.update(overrides)
    return codes.issue(**params)


class TestPKCE:
    def test_rfc7636_vector(self):
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert compute_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_round_trip(self, pkce):
        verifier, challenge = pkce()
        assert verify_pkce(challenge, verifier)

    def test_single_bit_flip_fails(self, pkce):
        verifier, challenge = pkce()
        for index, char in enumerate(verifier):
            for bit in range(8):
                mutated = verifier[:index] + chr(ord(char) ^ (1 << bit)) + verifier[index + 1 :]
                assert not verify_pkce(challenge, mutated), (index, bit)

    def test_missing_values_fail(self, pkce):
        verifier, challenge = pkce()
        assert not verify_pkce(None, verifier)
        assert not verify_pkce(challenge, None)
        assert not verify_pkce("", "")

    def test_non_ascii_challenge_does_not_raise(self, pkce):
        verifier, _ = pkce()
        assert not verify_pkce("défi", verifier)


class TestIssue:
    def test_code_is_random_hex(self, codes, pkce):
        _, challenge = pkce()
        first = _issue(codes, challenge)
        second = _issue(codes, challenge)
        assert len(first) == 64
        int(first, 16)
        assert first != second

    def test_plain_method_rejected(self, codes, pkce):
        _, challenge = pkce()
        with pytest.raises(ValueError):
            _issue(codes, challenge, code_challenge_method="plain")


class TestRedeem:
    def test_success_returns_bound_data(self, codes, pkce):
        verifier, challenge = pkce()
        code = _issue(codes, challenge)

        data, failure = codes.redeem(code, REDIRECT, verifier)
        assert failure is None
        assert data.client_id == "client-1"
        assert data.user_id == "42"
        assert data.org_id == "7"
        assert data.scope == "mcp:read"
        assert data.resource == "https://api.example/mcp/api"
        assert data.redirect_uri == REDIRECT

    def test_second_redemption_fails(self, codes, pkce):
        verifier, challenge = pkce()
        code = _issue(codes, challenge)
        codes.redeem(code, REDIRECT, verifier)

        data, failure = codes.redeem(code, REDIRECT, verifier)
        assert data is None
        assert failure == RedeemFailure.INVALID_OR_EXPIRED

    def test_unknown_code(self, codes, pkce):
        verifier, _ = pkce()
        assert codes.redeem("nope", REDIRECT, verifier) == (None, RedeemFailure.INVALID_OR_EXPIRED)
        assert codes.redeem("", REDIRECT, verifier) == (None, RedeemFailure.INVALID_OR_EXPIRED)

    def test_wrong_verifier_burns_code(self, codes, pkce):
        verifier, challenge = pkce()
        other_verifier, _ = pkce()
        code = _issue(codes, challenge)

        assert codes.redeem(code, REDIRECT, other_verifier) == (None, RedeemFailure.PKCE_MISMATCH)
        # The correct verifier no longer helps.
        assert codes.redeem(code, REDIRECT, verifier) == (None, RedeemFailure.INVALID_OR_EXPIRED)

    def test_redirect_mismatch(self, codes, pkce):
        verifier, challenge = pkce()
        code = _issue(codes, challenge)
        data, failure = codes.redeem(code, "https://evil.example/cb", verifier)
        assert data is None
        assert failure == RedeemFailure.REDIRECT_MISMATCH

    def test_expired_code(self, codes, clock, pkce):
        verifier, challenge = pkce()
        code = _issue(codes, challenge)
        clock.advance(1800)
        assert codes.redeem(code, REDIRECT, verifier) == (None, RedeemFailure.INVALID_OR_EXPIRED)

    def test_just_before_expiry(self, codes, clock, pkce):
        verifier, challenge = pkce()
        code = _issue(codes, challenge)
        clock.advance(1799)
        data, failure = codes.redeem(code, REDIRECT, verifier)
        assert failure is None
        assert data is not None

    def test_concurrent_redemption_single_winner(self, codes, pkce):
        verifier, challenge = pkce()
        code = _issue(codes, challenge)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: codes.redeem(code, REDIRECT, verifier), range(16)))

        winners = [data for data, _ in results if data is not None]
        assert len(winners) == 1
        assert all(
            failure == RedeemFailure.INVALID_OR_EXPIRED for data, failure in results if data is None
        )


class TestCleanup:
    def test_delete_all_expired(self, codes, storage, clock, pkce):
        _, challenge = pkce()
        _issue(codes, challenge)
        _issue(codes, challenge)
        assert codes.delete_all_expired() == 0

        clock.advance(1801)
        fresh_verifier, fresh_challenge = pkce()
        fresh = _issue(codes, fresh_challenge)
        assert codes.delete_all_expired() == 2

        data, _ = codes.redeem(fresh, REDIRECT, fresh_verifier)
        assert data is not None
