"""
Unit tests for authenticator providers.
"""

import asyncio

import pytest

from vaulton.authenticator import Authenticator, CallbackAuthenticator


class TestAuthenticatorInterface:
    def test_base_class_is_abstract(self):
        with pytest.raises(TypeError):
            Authenticator()

    def test_partial_subclass_is_abstract(self):
        class AssertOnly(Authenticator):
            async def get_assertion(self, options):
                return {}

        with pytest.raises(TypeError):
            AssertOnly()

    def test_callback_authenticator_awaits_sync_and_async(self):
        async def create(options):
            return {"id": "new", "challenge": options["challenge"]}

        authenticator = CallbackAuthenticator(get_assertion=lambda options: {"id": "cred"}, create_credential=create)

        assert asyncio.run(authenticator.get_assertion({})) == {"id": "cred"}
        assert asyncio.run(authenticator.create_credential({"challenge": "abc"}))["challenge"] == "abc"

    def test_callback_without_registration(self):
        authenticator = CallbackAuthenticator(get_assertion=lambda options: {})

        with pytest.raises(NotImplementedError):
            asyncio.run(authenticator.create_credential({}))
