import unittest
from unittest.mock import MagicMock

import requests

from marketdesk.auth import (
    AuthSession,
    AuthUser,
    HostedAuthClient,
    InMemoryAuthClient,
    authorize,
    build_session,
)
from marketdesk.errors import AuthError


def _response(status_code, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload
    return response


class AuthorizeTests(unittest.TestCase):
    def setUp(self):
        self.editor = AuthSession(AuthUser("u1", "ed@example.com", "editor"), "t1")
        self.admin = build_session(AuthUser("u2", "admin@example.com", "authenticated"), "t2", "admin@example.com")

    def test_signed_out_is_denied(self):
        self.assertFalse(authorize(None))

    def test_any_signed_in_user_passes_without_roles(self):
        self.assertTrue(authorize(self.editor))

    def test_role_must_match(self):
        self.assertTrue(authorize(self.editor, ["editor"]))
        self.assertFalse(authorize(self.editor, ["admin"]))

    def test_admin_passes_everything(self):
        self.assertTrue(self.admin.is_admin)
        self.assertTrue(authorize(self.admin, ["admin"]))

    def test_admin_requires_configured_email(self):
        session = build_session(AuthUser("u3", "admin@example.com"), "t", None)
        self.assertFalse(session.is_admin)


class InMemoryAuthClientTests(unittest.TestCase):
    def test_sign_in_get_user_sign_out(self):
        auth = InMemoryAuthClient()
        created = auth.add_user("ed@example.com", "secret")

        user, token = auth.sign_in("ed@example.com", "secret")
        self.assertEqual(user, created)
        self.assertEqual(auth.get_user(token), created)

        auth.sign_out(token)
        self.assertIsNone(auth.get_user(token))

    def test_wrong_password(self):
        auth = InMemoryAuthClient()
        auth.add_user("ed@example.com", "secret")
        with self.assertRaises(AuthError):
            auth.sign_in("ed@example.com", "nope")


class HostedAuthClientTests(unittest.TestCase):
    def setUp(self):
        self.client = HostedAuthClient(base_url="https://abc.supabase.co/", api_key="anon")
        self.client.session = MagicMock()

    def test_password_grant(self):
        self.client.session.post.return_value = _response(
            200,
            {"access_token": "tok", "user": {"id": "u1", "email": "ed@example.com", "role": "authenticated"}},
        )

        user, token = self.client.sign_in("ed@example.com", "secret")

        self.assertEqual(token, "tok")
        self.assertEqual(user, AuthUser("u1", "ed@example.com", "authenticated"))
        args, kwargs = self.client.session.post.call_args
        self.assertEqual(args[0], "https://abc.supabase.co/auth/v1/token")
        self.assertEqual(kwargs["params"], {"grant_type": "password"})

    def test_rejected_credentials_raise_with_provider_message(self):
        self.client.session.post.return_value = _response(
            400, {"error": "invalid_grant", "error_description": "Invalid login credentials"}
        )
        with self.assertRaises(AuthError) as ctx:
            self.client.sign_in("ed@example.com", "bad")
        self.assertEqual(str(ctx.exception), "Invalid login credentials")

    def test_network_failure_raises_auth_error(self):
        self.client.session.post.side_effect = requests.ConnectionError("down")
        with self.assertRaises(AuthError):
            self.client.sign_in("ed@example.com", "secret")

    def test_get_user(self):
        self.client.session.get.return_value = _response(200, {"id": "u1", "email": "ed@example.com"})
        self.assertEqual(self.client.get_user("tok").id, "u1")

        self.client.session.get.return_value = _response(401, {"msg": "expired"})
        self.assertIsNone(self.client.get_user("tok"))

    def test_api_key_header(self):
        client = HostedAuthClient(base_url="https://abc.supabase.co", api_key="anon")
        self.assertEqual(client.session.headers["apikey"], "anon")


if __name__ == "__main__":
    unittest.main()
