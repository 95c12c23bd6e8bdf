"""
Wallet Flow Tests

Exercises the wallet facade against the development backend:
- Signup (registration, verification, smart account deployment)
- Login, logout and session restore
- Balance and account queries
- Passkey-authorized transfers and their failure modes
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from vaulton.authenticator import CallbackAuthenticator, SoftwareAuthenticator
from vaulton.errors import (
    AssertionDenied,
    AuthenticationFailed,
    BackendError,
    InvalidSession,
    NoSession,
    SubmissionRejected,
)
from vaulton.storage import MemorySessionStore
from vaulton.wallet import PasskeyWallet, create_wallet

RECIPIENT = "GBRPYHIL2CI3FNQ4BXLFMNDLFJUNPU2HY3ZMFSHONUCEOASW7QC7OX2H"


@pytest.fixture
def signed_up(wallet):
    """Wallet with a registered passkey and a deployed smart account."""
    asyncio.run(wallet.signup())
    return wallet


class TestSignup:
    """Test account creation."""

    def test_signup_persists_complete_session(self, wallet, ledger, authenticator):
        session = asyncio.run(wallet.signup())

        assert session.is_complete
        assert session.smart_account_id in ledger.accounts
        assert session.credential_id == authenticator.credential_ids[0]
        assert session.public_key_hex == session.passkey_pubkey
        assert wallet.get_session() == session
        assert wallet.is_logged_in()

    def test_signup_denied_saves_nothing(self, backend, memory_store):
        wallet = PasskeyWallet(backend, SoftwareAuthenticator(deny=True), memory_store)

        with pytest.raises(AssertionDenied):
            asyncio.run(wallet.signup())
        assert memory_store.load() is None

    def test_signup_authenticator_crash_is_denial(self, backend, memory_store):
        def explode(options):
            raise RuntimeError("bridge crashed")

        authenticator = CallbackAuthenticator(get_assertion=explode, create_credential=explode)
        wallet = PasskeyWallet(backend, authenticator, memory_store)

        with pytest.raises(AssertionDenied, match="bridge crashed"):
            asyncio.run(wallet.signup())
        with pytest.raises(AssertionDenied, match="bridge crashed"):
            asyncio.run(wallet.login())
        assert memory_store.load() is None

    def test_signup_rejected_by_backend(self, memory_store):
        backend = MagicMock()
        backend.register_challenge.return_value = {"options": {"challenge": "abc"}}
        backend.register_verify.return_value = {"success": False, "error": "attestation rejected"}

        wallet = PasskeyWallet(backend, SoftwareAuthenticator(), memory_store)
        with pytest.raises(AuthenticationFailed, match="attestation rejected"):
            asyncio.run(wallet.signup())
        assert memory_store.load() is None

    def test_signup_without_options(self, memory_store):
        backend = MagicMock()
        backend.register_challenge.return_value = {}

        wallet = PasskeyWallet(backend, SoftwareAuthenticator(), memory_store)
        with pytest.raises(AuthenticationFailed, match="registration options"):
            asyncio.run(wallet.signup())

    def test_deploy_failure_saves_nothing(self, memory_store):
        backend = MagicMock()
        backend.register_challenge.return_value = {"options": {"challenge": "abc"}}
        backend.register_verify.return_value = {"verified": True, "userId": "u1"}
        backend.get_account_info.return_value = {"userId": "u1", "smartAccountId": None}
        backend.deploy_smart_account.side_effect = BackendError("deploy failed", status_code=500)

        wallet = PasskeyWallet(backend, SoftwareAuthenticator(), memory_store)
        with pytest.raises(BackendError):
            asyncio.run(wallet.signup())
        assert memory_store.load() is None

    def test_account_still_missing_after_deploy(self, memory_store):
        backend = MagicMock()
        backend.register_challenge.return_value = {"options": {"challenge": "abc"}}
        backend.register_verify.return_value = {"success": True, "userId": "u1"}
        backend.get_account_info.return_value = {"userId": "u1", "smartAccountId": None}

        wallet = PasskeyWallet(backend, SoftwareAuthenticator(), memory_store)
        with pytest.raises(InvalidSession):
            asyncio.run(wallet.signup())
        backend.deploy_smart_account.assert_called_once()
        assert memory_store.load() is None

    def test_existing_account_is_not_redeployed(self, memory_store):
        backend = MagicMock()
        backend.register_challenge.return_value = {"options": {"challenge": "abc"}}
        backend.register_verify.return_value = {"success": True, "userId": "u1"}
        backend.get_account_info.return_value = {"userId": "u1", "smartAccountId": "CABCDEFGHIJKLMNOPQRSTUVWXYZ"}

        wallet = PasskeyWallet(backend, SoftwareAuthenticator(), memory_store)
        session = asyncio.run(wallet.signup())

        backend.deploy_smart_account.assert_not_called()
        assert session.smart_account_id == "CABCDEFGHIJKLMNOPQRSTUVWXYZ"


class TestLoginLogout:
    """Test session lifecycle."""

    def test_logout_then_login(self, signed_up):
        original = signed_up.get_session()
        signed_up.logout()

        assert signed_up.get_session() is None
        assert not signed_up.is_logged_in()

        session = asyncio.run(signed_up.login())
        assert session.user_id == original.user_id
        assert session.smart_account_id == original.smart_account_id

    def test_login_with_unknown_passkey(self, backend, memory_store):
        stranger = SoftwareAuthenticator()
        stranger.add_credential()
        wallet = PasskeyWallet(backend, stranger, memory_store)

        with pytest.raises(BackendError) as exc_info:
            asyncio.run(wallet.login())
        assert exc_info.value.status_code == 404
        assert memory_store.load() is None

    def test_login_verify_without_user(self, memory_store):
        backend = MagicMock()
        backend.login_challenge.return_value = {"options": {"challenge": "abc"}}
        backend.login_verify.return_value = {"success": True}
        authenticator = SoftwareAuthenticator()
        authenticator.add_credential()

        wallet = PasskeyWallet(backend, authenticator, memory_store)
        with pytest.raises(AuthenticationFailed, match="Login failed"):
            asyncio.run(wallet.login())
        assert memory_store.load() is None

    def test_restore_session_ignores_incomplete_record(self, memory_store):
        memory_store._write('{"userId": "u1", "smartAccountId": ""}')
        wallet = PasskeyWallet(MagicMock(), SoftwareAuthenticator(), memory_store)

        assert wallet.get_session() is not None
        assert wallet.restore_session() is None
        assert not wallet.is_logged_in()

    def test_logout_when_logged_out(self, wallet):
        wallet.logout()
        assert wallet.get_session() is None


class TestAccountQueries:
    """Test balance and account info lookups."""

    def test_balance_defaults_to_session_account(self, signed_up, test_config):
        balance = asyncio.run(signed_up.get_balance())

        assert balance["balanceInStroops"] == str(test_config["DEV_INITIAL_BALANCE_STROOPS"])
        assert balance["balanceInUsdc"] == "100.0000000"

    def test_account_info_defaults_to_session_user(self, signed_up):
        info = asyncio.run(signed_up.get_account_info())

        assert info["userId"] == signed_up.get_session().user_id
        assert info["hasPasskey"] is True

    def test_queries_without_session(self, wallet):
        with pytest.raises(NoSession):
            asyncio.run(wallet.get_balance())
        with pytest.raises(NoSession):
            asyncio.run(wallet.get_account_info())


class TestWalletTransfer:
    """Test transfers through the wallet against the development ledger."""

    def test_transfer_moves_balance_and_bumps_nonce(self, signed_up, ledger):
        account_id = signed_up.get_session().smart_account_id
        start = ledger.balance(account_id)

        result = asyncio.run(signed_up.transfer(RECIPIENT, "2.50"))

        assert result.transaction_hash
        assert ledger.nonce(account_id) == 1
        assert ledger.balance(account_id) == start - 25_000_000

    def test_consecutive_transfers(self, signed_up, ledger):
        account_id = signed_up.get_session().smart_account_id

        asyncio.run(signed_up.transfer(RECIPIENT, "1"))
        result = asyncio.run(signed_up.transfer(RECIPIENT, "1"))

        assert result.nonce == 1
        assert ledger.nonce(account_id) == 2

    def test_transfer_to_another_wallet(self, signed_up, backend, ledger):
        other = PasskeyWallet(backend, SoftwareAuthenticator(), MemorySessionStore())
        other_session = asyncio.run(other.signup())
        before = ledger.balance(other_session.smart_account_id)

        asyncio.run(signed_up.transfer(other_session.smart_account_id, "3"))

        assert ledger.balance(other_session.smart_account_id) == before + 30_000_000

    def test_insufficient_balance_is_rejected(self, signed_up, ledger):
        account_id = signed_up.get_session().smart_account_id

        with pytest.raises(SubmissionRejected, match="Insufficient"):
            asyncio.run(signed_up.transfer(RECIPIENT, "1000000"))
        assert ledger.nonce(account_id) == 0

    def test_nonce_race_is_rejected(self, signed_up, ledger, authenticator):
        """The ledger nonce moves after the challenge was built."""
        account_id = signed_up.get_session().smart_account_id

        async def racing_assertion(options):
            ledger.accounts[account_id]["nonce"] += 1
            return await authenticator.get_assertion(options)

        signed_up.orchestrator.authenticator = CallbackAuthenticator(racing_assertion)

        with pytest.raises(SubmissionRejected, match="Challenge does not match"):
            asyncio.run(signed_up.transfer(RECIPIENT, "1"))

    def test_transfer_requires_session(self, wallet):
        with pytest.raises(NoSession):
            asyncio.run(wallet.transfer(RECIPIENT, "1"))


class TestCreateWallet:
    def test_create_wallet_from_config(self, test_config):
        wallet = create_wallet(test_config)

        assert isinstance(wallet.store, MemorySessionStore)
        assert wallet.backend.base_url == test_config["VAULTON_BACKEND_URL"]
        assert wallet.assertion_timeout == test_config["ASSERTION_TIMEOUT_SECONDS"]
        assert isinstance(wallet.authenticator, SoftwareAuthenticator)

    def test_create_wallet_with_authenticator(self, test_config):
        authenticator = CallbackAuthenticator(lambda options: {})

        assert create_wallet(test_config, authenticator).authenticator is authenticator
