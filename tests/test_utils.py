"""Tests for the small client-side helpers."""

from __future__ import annotations

from datetime import timedelta

import pyotp
import pytest

from chatsync.errors import AuthErrorReason, AuthInvalidError, SignInError
from chatsync.utils.active_view import ActiveViewTracker
from chatsync.utils.identity import LocalIdentityProvider
from chatsync.utils.local_storage import LocalStorage
from chatsync.utils.verification import CodeVerifier

from conftest import ALICE


# ---------------------------------------------------------------------------
# ActiveViewTracker
# ---------------------------------------------------------------------------


class TestActiveView:
    def test_set_and_clear(self):
        tracker = ActiveViewTracker()
        assert tracker.active_id is None
        tracker.set_active("c1")
        assert tracker.is_active("c1")
        assert not tracker.is_active("c2")
        tracker.clear()
        assert not tracker.is_active("c1")

    def test_latest_write_wins(self):
        tracker = ActiveViewTracker()
        tracker.set_active("c1")
        tracker.set_active("c2")
        assert tracker.active_id == "c2"


# ---------------------------------------------------------------------------
# LocalStorage
# ---------------------------------------------------------------------------


class TestLocalStorage:
    def test_default_when_missing(self, tmp_path):
        storage = LocalStorage(tmp_path / "state")
        assert storage.get_bool("isAuthenticated") is False
        assert storage.get_bool("isAuthenticated", default=True) is True

    def test_persists_across_instances(self, tmp_path):
        LocalStorage(tmp_path).set_bool("isAuthenticated", True)
        assert LocalStorage(tmp_path).get_bool("isAuthenticated") is True

    def test_corrupt_file_reads_as_default(self, tmp_path):
        (tmp_path / "state.json").write_text("{not json", encoding="utf-8")
        assert LocalStorage(tmp_path).get_bool("isAuthenticated") is False

    def test_non_bool_value_reads_as_default(self, tmp_path):
        (tmp_path / "state.json").write_text('{"isAuthenticated": "yes"}', encoding="utf-8")
        assert LocalStorage(tmp_path).get_bool("isAuthenticated") is False


# ---------------------------------------------------------------------------
# CodeVerifier
# ---------------------------------------------------------------------------


class TestCodeVerifier:
    def test_issued_code_verifies_once(self):
        verifier = CodeVerifier(digits=4)
        code = verifier.issue("u1")
        assert len(code) == 4 and code.isdigit()
        assert verifier.verify("u1", code) is True
        assert verifier.verify("u1", code) is False

    def test_other_user_cannot_use_code(self):
        verifier = CodeVerifier()
        code = verifier.issue("u1")
        verifier.issue("u2")
        assert verifier.verify("u3", code) is False

    def test_discard(self):
        verifier = CodeVerifier()
        code = verifier.issue("u1")
        verifier.discard("u1")
        assert verifier.verify("u1", code) is False

    def test_code_matches_totp_of_secret(self):
        verifier = CodeVerifier(digits=6, interval=30)
        code = verifier.issue("u1")
        secret = verifier._secrets["u1"]
        assert pyotp.TOTP(secret, digits=6, interval=30).verify(code)


# ---------------------------------------------------------------------------
# LocalIdentityProvider
# ---------------------------------------------------------------------------


class TestLocalIdentity:
    @pytest.mark.asyncio
    async def test_sign_in_notifies_listeners(self, identity):
        changes = []
        remove = identity.on_auth_state_change(changes.append)

        user = await identity.sign_in("alice-token")
        await identity.sign_out()
        remove()
        await identity.sign_in("alice-token")

        assert user.id == ALICE.id
        assert [c.id if c else None for c in changes] == [ALICE.id, None]

    @pytest.mark.asyncio
    async def test_unknown_credential(self, identity):
        with pytest.raises(SignInError):
            await identity.sign_in("nope")

    @pytest.mark.asyncio
    async def test_disabled_account_cannot_sign_in(self, identity):
        identity.disable(ALICE.id)
        with pytest.raises(SignInError):
            await identity.sign_in("alice-token")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("breakage, reason", [
        ("disable", AuthErrorReason.USER_DISABLED),
        ("remove", AuthErrorReason.USER_NOT_FOUND),
        ("revoke", AuthErrorReason.INVALID_TOKEN),
        ("expire", AuthErrorReason.TOKEN_EXPIRED),
    ])
    async def test_validate_classifies_failures(self, identity, breakage, reason):
        await identity.sign_in("alice-token")
        {
            "disable": lambda: identity.disable(ALICE.id),
            "remove": lambda: identity.remove(ALICE.id),
            "revoke": identity.revoke_token,
            "expire": identity.expire_token,
        }[breakage]()

        with pytest.raises(AuthInvalidError) as exc_info:
            await identity.reload_and_validate()
        assert exc_info.value.reason == reason

    @pytest.mark.asyncio
    async def test_refresh_renews_expired_token(self):
        provider = LocalIdentityProvider(token_lifetime=timedelta(minutes=5))
        provider.register(ALICE, "alice-token")
        provider.restore_session(ALICE.id)
        provider.expire_token()

        await provider.force_token_refresh()
        await provider.reload_and_validate()

    @pytest.mark.asyncio
    async def test_validate_without_session(self):
        with pytest.raises(AuthInvalidError):
            await LocalIdentityProvider().reload_and_validate()
