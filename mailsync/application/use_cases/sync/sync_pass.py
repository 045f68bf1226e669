"""One synchronization pass for one provider.

Idle -> Locking -> Authenticating -> Fetching -> Normalizing -> Persisting
-> Checkpointing -> Done, with Failed reachable after Authenticating.

Pages are buffered in memory and committed once, so a crash or timeout
before Persisting leaves the previous durable cursor in place and the next
pass re-fetches the same range.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Protocol

from mailsync.application.dtos import (
    Checkpoint,
    FailureCheckpoint,
    PassCommit,
    PassOutcome,
    RateLimited,
)
from mailsync.core.config import Settings, get_settings
from mailsync.domain import sync_policy
from mailsync.domain.entities import MutationEvent, ProviderSnapshot, RemoteMessage
from mailsync.domain.enums import (
    ErrorClass,
    MutationEventType,
    MutationReason,
    SyncState,
)
from mailsync.domain.exceptions import (
    AuthExpiredException,
    CursorConflictException,
    CursorInvalidatedException,
    MailSyncException,
    ResourceNotFoundException,
    SyncTimeoutException,
    classify,
)
from mailsync.domain.value_objects import Cursor, decode_cursor
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import TracedOperation
from mailsync.shared.utils.datetime import utc_now

if TYPE_CHECKING:
    from mailsync.application.interfaces import (
        ICredentialVault,
        IEventBus,
        IMailProvider,
        IProviderLockManager,
        ISyncStore,
    )
    from mailsync.application.services.normalizer import Normalizer
    from mailsync.domain.entities import Credential
    from mailsync.domain.enums import ProviderType

logger = get_logger(__name__)


class AdapterLookup(Protocol):
    """Anything that resolves a provider type to its adapter (the registry)."""

    def get(self, provider_type: ProviderType) -> IMailProvider: ...


class _Fetched:
    """Buffered result of the Fetching state."""

    def __init__(self) -> None:
        self.messages: list[RemoteMessage] = []
        self.pages = 0
        self.cursor: Cursor | None = None
        self.resynced = False
        self.rate_limited: RateLimited | None = None


class SyncPassUseCase:
    """Runs the per-pass state machine against injected ports."""

    def __init__(
        self,
        store: ISyncStore,
        vault: ICredentialVault,
        adapters: AdapterLookup,
        locks: IProviderLockManager,
        events: IEventBus,
        normalizer: Normalizer,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._vault = vault
        self._adapters = adapters
        self._locks = locks
        self._events = events
        self._normalizer = normalizer
        self._settings = settings or get_settings()

    async def run(self, provider_id: str, *, require_due: bool = False) -> PassOutcome:
        """Run one pass. Never raises for sync failures; they land in the outcome.

        require_due=True skips a provider whose next_sync_at moved into the
        future after the job was queued (a scheduled job that waited behind
        another pass).
        """
        token = await self._locks.acquire(provider_id)
        if token is None:
            logger.info("Provider %s already has an active pass; skipping", provider_id)
            return PassOutcome(provider_id=provider_id, state=SyncState.SKIPPED, detail="locked")
        try:
            provider = await self._store.get_provider(provider_id)
            if provider is None or not provider.is_active:
                logger.info("Provider %s is missing or inactive; skipping", provider_id)
                return PassOutcome(provider_id=provider_id, state=SyncState.SKIPPED, detail="inactive")
            if require_due and not provider.is_due(utc_now()):
                return PassOutcome(provider_id=provider_id, state=SyncState.SKIPPED, detail="not_due")
            return await self._run_locked(provider)
        finally:
            await self._locks.release(provider_id, token)

    async def _run_locked(self, provider: ProviderSnapshot) -> PassOutcome:
        timeout = self._settings.sync_pass_timeout_seconds
        attributes = {
            "provider_id": provider.id,
            "tenant_id": provider.tenant_id,
            "provider_type": provider.provider_type.value,
        }
        committed: list[MutationEvent] = []
        async with TracedOperation("sync.pass", attributes) as op:
            try:
                async with asyncio.timeout(timeout):
                    outcome = await self._execute(provider, committed)
            except TimeoutError:
                outcome = await self._fail(provider, SyncTimeoutException(timeout))
            except CursorConflictException:
                logger.warning("Provider %s cursor moved during the pass; discarding results", provider.id)
                outcome = PassOutcome(provider_id=provider.id, state=SyncState.SKIPPED, detail="cursor_conflict")
            except ResourceNotFoundException:
                logger.info("Provider %s was removed during the pass", provider.id)
                outcome = PassOutcome(provider_id=provider.id, state=SyncState.SKIPPED, detail="removed")
            except MailSyncException as e:
                outcome = await self._fail(provider, e)
            except Exception as e:
                logger.exception("Unexpected error syncing provider %s", provider.id)
                outcome = await self._fail(provider, e)
            op.record(
                outcome=outcome.state.value,
                detail=outcome.detail,
                messages=outcome.messages,
                pages=outcome.pages,
                error_class=outcome.error_class.value if outcome.error_class else None,
            )
        # Fan-out runs after the commit and outside the pass timeout.
        for event in committed:
            await self._events.publish(event)
        return outcome

    async def _execute(self, provider: ProviderSnapshot, committed: list[MutationEvent]) -> PassOutcome:
        """Run the pass up to the commit. Events for committed changes go to committed."""
        # Authenticating
        credential = await self._vault.ensure_valid(provider)
        adapter = self._adapters.get(provider.provider_type)

        # Fetching
        try:
            remote_folders = await adapter.fetch_folders(credential)
            fetched = await self._fetch_all(provider, adapter, credential)
        except AuthExpiredException:
            logger.info("Provider %s access token rejected early; refreshing", provider.id)
            current = await self._store.get_provider(provider.id) or provider
            credential = await self._vault.ensure_valid(current, force=True)
            remote_folders = await adapter.fetch_folders(credential)
            fetched = await self._fetch_all(provider, adapter, credential)
        if fetched.rate_limited is not None:
            return await self._rate_limited(provider, fetched.rate_limited)

        # Normalizing
        folders = self._normalizer.normalize_folders(remote_folders)
        folder_map = {f.remote_id: f.canonical_name for f in folders}
        emails, deleted_ids, skipped = self._normalizer.normalize_batch(fetched.messages, folder_map)

        # Persisting + Checkpointing (one transaction)
        now = utc_now()
        checkpoint = self._checkpoint(provider, len(emails), now)
        result = await self._store.commit_pass(
            PassCommit(
                provider_id=provider.id,
                previous_cursor=provider.cursor,
                new_cursor=self._cursor_to_write(provider, fetched),
                emails=emails,
                deleted_external_ids=deleted_ids,
                folders=folders,
                checkpoint=checkpoint,
            )
        )

        for external_id in [*result.inserted, *result.updated]:
            committed.append(self._event(provider, MutationReason.MESSAGE_PROCESSED, entity_id=external_id))
        for external_id in result.deleted:
            committed.append(self._event(provider, MutationReason.MESSAGE_DELETED, entity_id=external_id))
        committed.append(self._event(
            provider,
            MutationReason.SYNC_COMPLETE,
            data={
                "inserted": len(result.inserted),
                "updated": len(result.updated),
                "deleted": len(result.deleted),
                "skipped": len(skipped) + len(result.skipped),
            },
        ))
        logger.info(
            "Synced provider %s: %d pages, %d changed, %d deleted, next in %s",
            provider.id,
            fetched.pages,
            len(emails),
            len(result.deleted),
            checkpoint.next_sync_at - now,
        )
        return PassOutcome(
            provider_id=provider.id,
            state=SyncState.DONE,
            messages=len(result.inserted) + len(result.updated) + len(result.deleted),
            pages=fetched.pages,
            skipped=len(skipped) + len(result.skipped),
            next_sync_at=checkpoint.next_sync_at,
        )

    async def _fetch_all(
        self,
        provider: ProviderSnapshot,
        adapter: IMailProvider,
        credential: Credential,
    ) -> _Fetched:
        """Loop fetch_changes until has_more is false.

        A rejected cursor restarts the pass as a bounded full sync, dropping
        anything buffered so far. A second rejection is a failure.
        """
        fetched = _Fetched()
        try:
            cursor = decode_cursor(provider.provider_type, provider.cursor)
        except ValueError:
            logger.warning("Provider %s has an unreadable cursor; running a full sync", provider.id)
            cursor = None
            fetched.resynced = True
        while True:
            try:
                result = await adapter.fetch_changes(credential, cursor)
            except CursorInvalidatedException:
                if fetched.resynced or cursor is None:
                    raise
                logger.info("Provider %s cursor invalidated; falling back to a full sync", provider.id)
                fetched = _Fetched()
                fetched.resynced = True
                cursor = None
                continue
            if isinstance(result, RateLimited):
                fetched.rate_limited = result
                return fetched
            fetched.pages += 1
            fetched.messages.extend(result.messages)
            fetched.cursor = cursor = result.cursor
            if not result.has_more:
                return fetched

    @staticmethod
    def _cursor_to_write(provider: ProviderSnapshot, fetched: _Fetched) -> str | None:
        """Encoded cursor to persist, or None to keep the stored one."""
        new = fetched.cursor
        if new is None:
            return None
        if not new.durable:
            logger.warning("Provider %s ended a pass on a non-durable cursor; keeping the old one", provider.id)
            return None
        if not fetched.resynced and provider.cursor:
            old = decode_cursor(provider.provider_type, provider.cursor)
            if old is not None and new.is_behind(old):
                logger.warning("Provider %s returned an older cursor; keeping the stored one", provider.id)
                return None
        return new.encode()

    def _checkpoint(self, provider: ProviderSnapshot, message_count: int, now: datetime) -> Checkpoint:
        settings = self._settings
        observed = sync_policy.observed_rate(
            message_count,
            provider.last_synced_at,
            now,
            timedelta(days=settings.max_lookback_days),
        )
        avg = sync_policy.smooth_activity_rate(
            provider.avg_activity_rate, observed, settings.activity_ema_weight
        )
        priority = sync_policy.priority_for_activity(avg)
        return Checkpoint(
            last_synced_at=now,
            avg_activity_rate=avg,
            sync_priority=priority,
            next_sync_at=now + sync_policy.effective_interval(priority, 0, settings.backoff_factor),
            messages_synced=message_count,
        )

    async def _rate_limited(self, provider: ProviderSnapshot, signal: RateLimited) -> PassOutcome:
        """Transient backoff: honor retry_after, cap the streak at the soft cap."""
        settings = self._settings
        delay = signal.retry_after if signal.retry_after is not None else settings.rate_limit_default_delay_seconds
        streak = min(provider.error_streak + 1, max(provider.error_streak, settings.rate_limit_error_streak_cap))
        next_sync_at = utc_now() + timedelta(seconds=delay)
        await self._store.record_failure(
            FailureCheckpoint(
                provider_id=provider.id,
                error_class=ErrorClass.RATE_LIMITED,
                error_message=f"Rate limited; retry after {delay:g}s",
                error_streak=streak,
                next_sync_at=next_sync_at,
            )
        )
        logger.info("Provider %s rate limited; next attempt in %ss", provider.id, delay)
        return PassOutcome(
            provider_id=provider.id,
            state=SyncState.FAILED,
            error_class=ErrorClass.RATE_LIMITED,
            next_sync_at=next_sync_at,
        )

    async def _fail(self, provider: ProviderSnapshot, error: BaseException) -> PassOutcome:
        error_class = classify(error)
        if error_class == ErrorClass.RATE_LIMITED:
            return await self._rate_limited(provider, RateLimited(getattr(error, "retry_after", None)))

        fatal = error_class == ErrorClass.AUTH_REVOKED
        streak = provider.error_streak + 1
        next_sync_at = utc_now() + sync_policy.effective_interval(
            provider.sync_priority, streak, self._settings.backoff_factor
        )
        message = error.message if isinstance(error, MailSyncException) else type(error).__name__
        await self._store.record_failure(
            FailureCheckpoint(
                provider_id=provider.id,
                error_class=error_class,
                error_message=message,
                error_streak=streak,
                next_sync_at=next_sync_at,
                deactivate=fatal,
            )
        )
        if fatal:
            logger.warning("Provider %s deactivated: authorization revoked", provider.id)
            await self._publish(
                provider,
                MutationReason.PROVIDER_DEACTIVATED,
                data={"errorClass": error_class.value},
            )
        else:
            logger.warning(
                "Sync failed for provider %s (%s, streak %d): %s",
                provider.id,
                error_class.value,
                streak,
                message,
            )
            await self._publish(provider, MutationReason.SYNC_FAILED, data={"errorClass": error_class.value})
        return PassOutcome(
            provider_id=provider.id,
            state=SyncState.FAILED,
            error_class=error_class,
            next_sync_at=next_sync_at,
        )

    @staticmethod
    def _event(
        provider: ProviderSnapshot,
        reason: MutationReason,
        *,
        entity_id: str | None = None,
        data: dict | None = None,
    ) -> MutationEvent:
        return MutationEvent(
            tenant_id=provider.tenant_id,
            type=MutationEventType.EMAIL_UPDATE,
            reason=reason,
            provider_id=provider.id,
            entity_id=entity_id,
            data=data or {},
        )

    async def _publish(self, provider: ProviderSnapshot, reason: MutationReason, *, data: dict | None = None) -> None:
        await self._events.publish(self._event(provider, reason, data=data))
