"""Tests for resolving domain-wide delegations into user credentials."""
from __future__ import annotations

import asyncio
import os
import tempfile
import time
import unittest
from pathlib import Path
from unittest import mock

import httpx
import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from sqlalchemy import text

_TEST_TMPDIR = tempfile.TemporaryDirectory()
_TEST_DB_PATH = Path(_TEST_TMPDIR.name) / "booking.db"

_ENV = {
    "DATABASE_URL": f"sqlite:///{_TEST_DB_PATH}",
    "ENCRYPTION_KEY": "AuYz-pnPer1D-0b3bmaaKjZYBdQEfLTRZJlqaX0Xw40=",
    "APP_SECRET": "test-app-secret",
}
for key, value in _ENV.items():
    os.environ.setdefault(key, value)

from booking_gateway import database as database_module  # noqa: E402
from booking_gateway import delegation as delegation_module  # noqa: E402
from booking_gateway import main as main_module  # noqa: E402
from booking_gateway import models as models_module  # noqa: E402
from booking_gateway.calendars import CalendarError  # noqa: E402
from booking_gateway.repositories import DelegationRepository, to_user_with_credentials  # noqa: E402
from booking_gateway.schemas import (  # noqa: E402
    DelegatedCredential,
    DelegationConfig,
    HostWithUser,
    ServiceAccountKey,
    StoredCredential,
    UserRef,
    UserWithCredentials,
)


def _reset_database() -> None:
    models_module.Base.metadata.drop_all(bind=database_module.engine)
    models_module.Base.metadata.create_all(bind=database_module.engine)


def _private_key_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


_PRIVATE_KEY_PEM = _private_key_pem()
_SERVICE_ACCOUNT_KEY = {
    "client_email": "svc@acme.iam.example",
    "client_id": "1234",
    "private_key": _PRIVATE_KEY_PEM,
    "token_uri": "https://oauth2.example.test/token",
}


def _session_token(user_id: int) -> str:
    return jwt.encode(
        {"sub": str(user_id), "exp": int(time.time()) + 600},
        os.environ["APP_SECRET"],
        algorithm="HS256",
    )


class _DummyResponse:
    def __init__(self, *, status_code: int = 200, payload: dict | None = None) -> None:
        self.status_code = status_code
        self._payload = payload if payload is not None else {"access_token": "ya29.token"}

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            request = httpx.Request("POST", "https://oauth2.example.test/token")
            raise httpx.HTTPStatusError(
                "error",
                request=request,
                response=httpx.Response(self.status_code, request=request),
            )

    def json(self):
        return self._payload


class _DummyAsyncClient:
    response = _DummyResponse()
    requests: list = []

    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url, data=None):
        type(self).requests.append((url, data))
        return type(self).response


class _UnreachableAsyncClient(_DummyAsyncClient):
    async def post(self, url, data=None):
        raise httpx.ConnectError("connection refused")


class DelegationTestCase(unittest.TestCase):
    def setUp(self) -> None:
        _reset_database()
        self.session = database_module.SessionLocal()
        self.session.add_all([
            models_module.User(id=1, username="ada", email="ada@acme.com", organization_id=100),
            models_module.User(id=2, username="bob", email="bob@acme.com", organization_id=100),
            models_module.User(id=3, username="eve", email="eve@other.org", organization_id=None),
            models_module.Credential(id=10, type="zoom_video", app_id="zoom", user_id=1, key={"token": "z"}),
            models_module.DomainWideDelegation(
                id="dwd-acme",
                organization_id=100,
                domain="acme.com",
                workspace_platform_slug="google",
                enabled=True,
                service_account_key=dict(_SERVICE_ACCOUNT_KEY),
            ),
        ])
        self.session.commit()

    def tearDown(self) -> None:
        self.session.close()

    def _set_delegation(self, **values) -> None:
        row = self.session.query(models_module.DomainWideDelegation).filter_by(id="dwd-acme").one()
        for name, value in values.items():
            setattr(row, name, value)
        self.session.commit()


class DelegationRepositoryTests(DelegationTestCase):
    def test_key_is_encrypted_at_rest(self):
        raw = self.session.execute(text("SELECT service_account_key FROM domain_wide_delegations")).scalar_one()
        self.assertIsInstance(raw, str)
        self.assertNotIn("svc@acme.iam.example", raw)

    def test_key_is_only_loaded_by_sensitive_lookups(self):
        repository = DelegationRepository(self.session)

        self.assertIsNone(repository.find_by_id("dwd-acme").service_account_key)
        sensitive = repository.find_by_id("dwd-acme", sensitive=True)
        self.assertEqual(sensitive.service_account_key.client_email, "svc@acme.iam.example")

    def test_find_by_email_uses_member_organization_and_domain(self):
        repository = DelegationRepository(self.session)

        self.assertEqual(repository.find_by_email("ada@acme.com").id, "dwd-acme")
        self.assertIsNone(repository.find_by_email("eve@other.org"))
        self.assertIsNone(repository.find_by_email("nobody@acme.com"))

    def test_domain_is_lowercased_on_write(self):
        self.session.add(models_module.DomainWideDelegation(
            id="dwd-mixed",
            organization_id=300,
            domain=" Mixed.Example ",
            workspace_platform_slug="google",
            enabled=True,
        ))
        self.session.commit()

        row = self.session.get(models_module.DomainWideDelegation, "dwd-mixed")
        self.assertEqual(row.domain, "mixed.example")
        self.assertEqual(DelegationRepository(self.session).find_by_org_and_domain(300, "MIXED.example").id, "dwd-mixed")

    def test_lookup_ignores_case_of_stored_domain(self):
        self.session.execute(
            text("UPDATE domain_wide_delegations SET domain = 'Acme.com' WHERE id = 'dwd-acme'")
        )
        self.session.commit()

        self.assertEqual(DelegationRepository(self.session).find_by_email("ada@acme.com").id, "dwd-acme")


class ResolverTests(DelegationTestCase):
    def test_credentials_for_user_by_email(self):
        credentials = delegation_module.get_all_delegated_credentials_for_user(
            self.session, UserRef(id=1, email="ada@acme.com")
        )

        self.assertEqual([credential.app_id for credential in credentials], ["google-calendar", "google-meet"])
        self.assertIsNotNone(credentials[0].delegated_to)

    def test_filtered_variants(self):
        user = UserRef(id=1, email="ada@acme.com")

        calendars = delegation_module.get_all_delegated_calendar_credentials_for_user(self.session, user)
        by_type = delegation_module.get_all_delegated_credentials_for_user_by_app_type(self.session, user, "google_video")
        by_slug = delegation_module.get_all_delegated_credentials_for_user_by_app_slug(self.session, user, "google-calendar")

        self.assertEqual([credential.type for credential in calendars], ["google_calendar"])
        self.assertEqual([credential.app_id for credential in by_type], ["google-meet"])
        self.assertEqual([credential.type for credential in by_slug], ["google_calendar"])

    def test_map_without_organization_is_empty(self):
        users = [UserRef(id=1, email="ada@acme.com")]
        self.assertEqual(delegation_module.get_delegated_credentials_map_per_user(self.session, None, users), {})

    def test_map_with_organization_and_no_users_is_rejected(self):
        with self.assertRaises(ValueError):
            delegation_module.get_delegated_credentials_map_per_user(self.session, 100, [])

    def test_map_covers_every_user_in_batch(self):
        users = [UserRef(id=1, email="ada@acme.com"), UserRef(id=2, email="bob@acme.com")]

        credentials_map = delegation_module.get_delegated_credentials_map_per_user(self.session, 100, users)

        self.assertEqual(sorted(credentials_map), [1, 2])
        self.assertTrue(all(len(credentials) == 2 for credentials in credentials_map.values()))
        self.assertEqual(credentials_map[2][0].user_email, "bob@acme.com")

    def test_disabled_delegation_yields_empty_map(self):
        self._set_delegation(enabled=False)
        users = [UserRef(id=1, email="ada@acme.com")]
        self.assertEqual(delegation_module.get_delegated_credentials_map_per_user(self.session, 100, users), {})

    def test_unsupported_platform_yields_no_credentials(self):
        self._set_delegation(workspace_platform_slug="microsoft")
        users = [UserRef(id=1, email="ada@acme.com")]

        credentials_map = delegation_module.get_delegated_credentials_map_per_user(self.session, 100, users)

        self.assertEqual(credentials_map, {1: []})

    def test_find_delegated_calendar_credential(self):
        credential = delegation_module.find_delegated_calendar_credential(self.session, 2, "dwd-acme")
        self.assertEqual(credential.user_email, "bob@acme.com")
        self.assertIsNone(delegation_module.find_delegated_calendar_credential(self.session, 99, "dwd-acme"))
        self.assertIsNone(delegation_module.find_delegated_calendar_credential(self.session, 2, "unknown"))


class EnrichmentTests(DelegationTestCase):
    def _user(self, user_id: int) -> UserWithCredentials:
        row = self.session.query(models_module.User).filter_by(id=user_id).one()
        return to_user_with_credentials(row)

    def test_users_keep_their_fields_and_inputs_are_untouched(self):
        ada = self._user(1)

        enriched = delegation_module.enrich_users_with_delegated_credentials(self.session, 100, [ada])

        self.assertIsNot(enriched[0], ada)
        self.assertEqual(enriched[0].username, "ada")
        self.assertEqual(enriched[0].organization_id, 100)
        self.assertEqual(
            [credential.app_id for credential in enriched[0].credentials],
            ["google-calendar", "google-meet", "zoom"],
        )
        self.assertEqual([credential.id for credential in ada.credentials], [10])

    def test_enriching_twice_does_not_duplicate(self):
        once = delegation_module.enrich_users_with_delegated_credentials(self.session, 100, [self._user(1)])
        twice = delegation_module.enrich_users_with_delegated_credentials(self.session, 100, once)

        self.assertEqual(once[0].credentials, twice[0].credentials)

    def test_users_without_organization_keep_stored_credentials(self):
        enriched = delegation_module.enrich_users_with_delegated_credentials(self.session, None, [self._user(1)])
        self.assertEqual([credential.id for credential in enriched[0].credentials], [10])

    def test_empty_batch_is_empty(self):
        self.assertEqual(delegation_module.enrich_users_with_delegated_credentials(self.session, 100, []), [])

    def test_hosts_keep_their_fields(self):
        host = HostWithUser(user=self._user(2), is_fixed=True, priority=2)

        enriched = delegation_module.enrich_hosts_with_delegated_credentials(self.session, 100, [host])

        self.assertTrue(enriched[0].is_fixed)
        self.assertEqual(enriched[0].priority, 2)
        self.assertEqual(len(enriched[0].user.credentials), 2)
        self.assertEqual(host.user.credentials, [])

    def test_single_user_without_org_id(self):
        enriched = delegation_module.enrich_user_with_delegated_credentials_without_org_id(self.session, self._user(1))
        self.assertEqual(len(enriched.credentials), 3)

        conferencing = delegation_module.enrich_user_with_delegated_conferencing_credentials_without_org_id(
            self.session, self._user(1)
        )
        self.assertEqual([credential.app_id for credential in conferencing.credentials], ["google-meet", "zoom"])


class LookupTests(DelegationTestCase):
    def test_delegation_id_searches_only_delegated(self):
        delegated = delegation_module.get_all_delegated_credentials_for_user(
            self.session, UserRef(id=1, email="ada@acme.com")
        )

        credential = delegation_module.get_delegated_or_find_stored_credential(
            self.session,
            credential_id=10,
            delegation_credential_id="dwd-acme",
            delegated_credentials=delegated,
        )

        self.assertIsInstance(credential, DelegatedCredential)

    def test_numeric_id_loads_stored_credential(self):
        credential = delegation_module.get_delegated_or_find_stored_credential(
            self.session, credential_id=10, delegation_credential_id=None, delegated_credentials=[]
        )
        self.assertIsInstance(credential, StoredCredential)
        self.assertEqual(credential.app_id, "zoom")

    def test_missing_ids_return_none(self):
        for credential_id in (None, 404):
            with self.subTest(credential_id=credential_id):
                self.assertIsNone(
                    delegation_module.get_delegated_or_find_stored_credential(
                        self.session,
                        credential_id=credential_id,
                        delegation_credential_id=None,
                        delegated_credentials=[],
                    )
                )


class WorkspaceCheckTests(DelegationTestCase):
    def setUp(self) -> None:
        super().setUp()
        _DummyAsyncClient.requests = []
        _DummyAsyncClient.response = _DummyResponse()
        self.config = DelegationConfig(
            id="dwd-acme",
            workspace_platform_slug="google",
            enabled=True,
            service_account_key=ServiceAccountKey(**_SERVICE_ACCOUNT_KEY),
        )
        self.user = UserRef(id=1, email="ada@acme.com")

    def test_probe_signs_assertion_for_user(self):
        with mock.patch("booking_gateway.calendars.httpx.AsyncClient", _DummyAsyncClient):
            configured = asyncio.run(delegation_module.check_configured_in_workspace(self.config, self.user))

        self.assertTrue(configured)
        url, data = _DummyAsyncClient.requests[0]
        self.assertEqual(url, "https://oauth2.example.test/token")
        claims = jwt.decode(data["assertion"], options={"verify_signature": False})
        self.assertEqual(claims["sub"], "ada@acme.com")
        self.assertEqual(claims["iss"], "svc@acme.iam.example")

    def test_rejected_probe_is_not_configured(self):
        _DummyAsyncClient.response = _DummyResponse(status_code=401)
        with mock.patch("booking_gateway.calendars.httpx.AsyncClient", _DummyAsyncClient):
            with self.assertLogs("booking_gateway.calendars", level="WARNING"):
                configured = asyncio.run(delegation_module.check_configured_in_workspace(self.config, self.user))
        self.assertFalse(configured)

    def test_unreachable_provider_raises(self):
        with mock.patch("booking_gateway.calendars.httpx.AsyncClient", _UnreachableAsyncClient):
            with self.assertRaises(CalendarError):
                asyncio.run(delegation_module.check_configured_in_workspace(self.config, self.user))

    def test_other_platforms_are_not_checked(self):
        config = self.config.model_copy(update={"workspace_platform_slug": "microsoft"})
        with mock.patch("booking_gateway.calendars.httpx.AsyncClient", _DummyAsyncClient):
            configured = asyncio.run(delegation_module.check_configured_in_workspace(config, self.user))
        self.assertFalse(configured)
        self.assertEqual(_DummyAsyncClient.requests, [])


class CredentialEndpointTests(DelegationTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.app = main_module.app

    def test_requires_bearer_token(self):
        with TestClient(self.app) as client:
            response = client.get("/me/credentials")
        self.assertEqual(response.status_code, 401)

    def test_lists_merged_credentials_without_secrets(self):
        with TestClient(self.app) as client:
            response = client.get(
                "/me/credentials",
                params={"orgId": 100},
                headers={"Authorization": f"Bearer {_session_token(1)}"},
            )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([entry["appId"] for entry in body], ["google-calendar", "google-meet", "zoom"])
        self.assertEqual(body[0]["delegatedToId"], "dwd-acme")
        self.assertNotIn("delegatedTo", body[0])
        self.assertNotIn("key", body[2])

    def test_check_endpoint(self):
        with mock.patch("booking_gateway.calendars.httpx.AsyncClient", _DummyAsyncClient):
            with TestClient(self.app) as client:
                response = client.post(
                    "/delegations/dwd-acme/check",
                    headers={"Authorization": f"Bearer {_session_token(2)}"},
                )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"delegationId": "dwd-acme", "configured": True})

    def test_check_unknown_delegation_returns_404(self):
        with TestClient(self.app) as client:
            response = client.post(
                "/delegations/unknown/check",
                headers={"Authorization": f"Bearer {_session_token(2)}"},
            )
        self.assertEqual(response.status_code, 404)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
