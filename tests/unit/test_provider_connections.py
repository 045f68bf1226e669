"""Connecting and disconnecting mailboxes."""

from datetime import timedelta

import pytest

from mailsync.application.services import ProviderConnections
from mailsync.domain.enums import MutationReason, ProviderType
from mailsync.domain.exceptions import ResourceNotFoundException, UnsupportedProviderException
from mailsync.infrastructure.external.email import CredentialVault, ProviderAdapterRegistry
from mailsync.infrastructure.messaging import InMemoryEventBus
from mailsync.shared.utils.datetime import utc_now


@pytest.fixture
def connections_harness(settings, cipher, fake_store_factory):
    def _build(*providers):
        store = fake_store_factory(*providers)
        vault = CredentialVault(store, ProviderAdapterRegistry(), settings, cipher=cipher)
        events = InMemoryEventBus(heartbeat_interval=60)
        published = []

        async def _record(event):
            published.append(event)

        events.publish = _record
        return ProviderConnections(store, vault, events), store, published

    return _build


async def test_oauth_tokens_are_stored_encrypted(connections_harness, cipher) -> None:
    """Plaintext tokens never reach the store."""
    connections, store, _ = connections_harness()
    expires_at = utc_now() + timedelta(hours=1)

    provider = await connections.connect_oauth(
        tenant_id="t1",
        provider_type="outlook",
        email_address="user@example.com",
        access_token="eyJ.access",
        refresh_token="M.refresh",
        expires_at=expires_at,
    )

    assert provider.provider_type == ProviderType.OUTLOOK
    assert provider.next_sync_at is None
    assert provider.token_expires_at == expires_at
    assert "eyJ.access" not in provider.credentials.access.ciphertext
    assert cipher.decrypt(provider.credentials.access) == "eyJ.access"
    assert cipher.decrypt(provider.credentials.refresh) == "M.refresh"


@pytest.mark.parametrize("provider_type", ["imap", "yahoo"])
async def test_oauth_connect_rejects_non_oauth_types(connections_harness, provider_type) -> None:
    connections, store, _ = connections_harness()
    with pytest.raises(UnsupportedProviderException):
        await connections.connect_oauth(
            tenant_id="t1",
            provider_type=provider_type,
            email_address="user@example.com",
            access_token="a",
            refresh_token=None,
            expires_at=None,
        )
    assert store.providers == {}


async def test_imap_connect_records_server_settings(connections_harness, cipher) -> None:
    """Username defaults to the mailbox address."""
    connections, _, _ = connections_harness()

    provider = await connections.connect_imap(
        tenant_id="t1",
        email_address="user@example.com",
        password="hunter2",
        imap_server="imap.example.com",
    )

    assert provider.provider_type == ProviderType.IMAP
    assert provider.connection_params == {
        "imap_server": "imap.example.com",
        "imap_port": 993,
        "use_ssl": True,
        "username": "user@example.com",
    }
    assert cipher.decrypt(provider.credentials.access) == "hunter2"
    assert provider.credentials.refresh is None


async def test_disconnect_wipes_and_deletes(connections_harness, snapshot_factory) -> None:
    provider = snapshot_factory()
    connections, store, published = connections_harness(provider)

    await connections.disconnect(provider.id)

    assert store.deactivated == [(provider.id, "disconnected", True)]
    assert store.deleted == [provider.id]
    assert published[0].reason == MutationReason.PROVIDER_DEACTIVATED
    assert published[0].tenant_id == provider.tenant_id


async def test_disconnect_unknown_provider_raises(connections_harness) -> None:
    connections, store, published = connections_harness()
    with pytest.raises(ResourceNotFoundException):
        await connections.disconnect("missing")
    assert store.deleted == []
    assert published == []
