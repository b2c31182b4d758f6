"""Session-aware coordinator spreading extraction across unreliable backends."""

from __future__ import annotations

import asyncio
import secrets
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Awaitable, Callable

from .config.models import OrchestratorSettings, ScrapePolicy
from .engine.contracts import ExtractionBackend, LoginResult
from .engine.dedup import OfferDeduplicator
from .errors import BackendFailure, ConfigurationError, EmptyResult, OfferpipeError, SessionUnavailable
from .infra.artifacts import ArtifactStore
from .infra.storage import SessionStore
from .logging_conf import configure_logging
from .models import Offer, SecondFactorChallenge, SessionRecord, SessionStatus, utcnow
from .registry import BackendRegistry

SCRAPE_ARTIFACT_NAMESPACE = "scraping"

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(slots=True)
class Credentials:
    username: str
    password: str
    options: dict[str, Any] | None = None


class Orchestrator:
    """Central coordinator for sessions and multi-backend extraction."""

    def __init__(
        self,
        session_store: SessionStore,
        backends: BackendRegistry,
        artifact_store: ArtifactStore | None = None,
        settings: OrchestratorSettings | None = None,
        deduplicator: OfferDeduplicator | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.session_store = session_store
        self.backends = backends
        self.artifact_store = artifact_store
        self.settings = settings or backends.settings
        self.deduplicator = deduplicator or OfferDeduplicator(self.settings.similarity_threshold)
        self._clock = clock
        self._sleep = sleep
        self._identity_locks: dict[str, asyncio.Lock] = {}
        self._identity_users: dict[str, int] = {}
        self._challenges: dict[str, SecondFactorChallenge] = {}
        self.logger = configure_logging().bind(component="orchestrator")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    async def ensure_session(
        self,
        owner_identity: str,
        credentials: Credentials | None = None,
        allow_login: bool = True,
    ) -> SessionRecord | SecondFactorChallenge:
        """Return a usable session for ``owner_identity``, logging in if allowed.

        Concurrent calls for the same identity are serialised so only one
        login is attempted; later callers pick up the stored session.
        """

        async with self._identity_guard(owner_identity):
            existing = await self.session_store.find_active(owner_identity)
            if existing is not None and existing.is_usable(self._clock()):
                self.logger.debug("session_reused", owner=owner_identity, session_id=existing.session_id)
                return existing
            if not allow_login or credentials is None:
                raise SessionUnavailable(f"No usable session for '{owner_identity}' and login not possible")
            return await self._login(owner_identity, credentials)

    @asynccontextmanager
    async def _identity_guard(self, owner_identity: str) -> AsyncIterator[None]:
        """Per-identity lock, dropped once no caller holds or awaits it."""

        lock = self._identity_locks.setdefault(owner_identity, asyncio.Lock())
        self._identity_users[owner_identity] = self._identity_users.get(owner_identity, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._identity_users[owner_identity] - 1
            if remaining:
                self._identity_users[owner_identity] = remaining
            else:
                del self._identity_users[owner_identity]
                del self._identity_locks[owner_identity]

    async def _login(
        self, owner_identity: str, credentials: Credentials
    ) -> SessionRecord | SecondFactorChallenge:
        backend_name, backend = self.backends.login_backend()
        try:
            result = await backend.login(credentials.username, credentials.password, credentials.options or {})
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("login_failed", owner=owner_identity, backend=backend_name, error=str(exc))
            raise SessionUnavailable(f"Login via '{backend_name}' failed: {exc}") from exc

        if result.requires_second_factor:
            challenge = self._open_challenge(owner_identity)
            self.logger.info("second_factor_required", owner=owner_identity, backend=backend_name)
            return challenge
        if not result.success:
            self.logger.warning("login_rejected", owner=owner_identity, backend=backend_name, error=result.error)
            raise SessionUnavailable(result.error or f"Login via '{backend_name}' was rejected")
        return await self._persist_session(owner_identity, result)

    async def _persist_session(self, owner_identity: str, result: LoginResult) -> SessionRecord:
        record = SessionRecord.issue(
            session_id=result.session_id or uuid.uuid4().hex,
            owner_identity=owner_identity,
            cookies=result.cookies,
            fingerprint=result.fingerprint,
            now=self._clock(),
            ttl=timedelta(days=self.settings.session_ttl_days),
        )
        await self.session_store.save(record)
        self.logger.info("session_created", owner=owner_identity, session_id=record.session_id)
        return record

    async def logout(self, session_id: str) -> bool:
        updated = await self.session_store.update_status(session_id, SessionStatus.INVALID)
        if updated:
            self.logger.info("session_invalidated", session_id=session_id)
        return updated

    # ------------------------------------------------------------------
    # Second factor challenges (expiry checked on read)
    # ------------------------------------------------------------------
    def _open_challenge(self, owner_identity: str) -> SecondFactorChallenge:
        now = self._clock()
        for token, stale in list(self._challenges.items()):
            if stale.is_expired(now) or stale.attempts_left == 0:
                del self._challenges[token]
        challenge = SecondFactorChallenge(
            token=secrets.token_urlsafe(16),
            owner_identity=owner_identity,
            created_at=now,
            expires_at=now + timedelta(minutes=self.settings.second_factor_ttl_minutes),
            max_attempts=self.settings.second_factor_max_attempts,
        )
        self._challenges[challenge.token] = challenge
        return challenge

    def pending_challenge(self, token: str) -> SecondFactorChallenge | None:
        challenge = self._challenges.get(token)
        if challenge is None:
            return None
        if challenge.is_expired(self._clock()) or challenge.attempts_left == 0:
            del self._challenges[token]
            return None
        return challenge

    async def complete_second_factor(self, token: str, code: str, options: dict[str, Any] | None = None) -> SessionRecord:
        challenge = self.pending_challenge(token)
        if challenge is None:
            raise SessionUnavailable("Second factor challenge is unknown or expired")
        backend_name, backend = self.backends.login_backend()
        verify = getattr(backend, "verify_second_factor", None)
        if verify is None:
            raise SessionUnavailable(f"Backend '{backend_name}' cannot verify a second factor")

        challenge.attempts += 1
        try:
            result: LoginResult = await verify(challenge.owner_identity, code, options or {})
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("second_factor_failed", owner=challenge.owner_identity, error=str(exc))
            result = LoginResult(success=False, error=str(exc))
        if not result.success:
            if challenge.attempts_left == 0:
                self._challenges.pop(token, None)
            raise SessionUnavailable(result.error or "Second factor rejected")
        self._challenges.pop(token, None)
        return await self._persist_session(challenge.owner_identity, result)

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------
    def _resolve_policy(self, policy: ScrapePolicy | str | None) -> ScrapePolicy:
        chosen = policy if policy is not None else self.settings.policy
        if chosen is None:
            raise ConfigurationError("No scrape policy configured; choose 'waterfall' or 'aggregation'")
        return ScrapePolicy(chosen)

    async def scrape_with_session(
        self,
        session_id: str,
        target_url: str,
        max_retries: int | None = None,
        policy: ScrapePolicy | str | None = None,
        options: dict[str, Any] | None = None,
    ) -> list[Offer]:
        chosen = self._resolve_policy(policy)
        session = await self.session_store.get(session_id)
        if session is None:
            raise SessionUnavailable(f"Session '{session_id}' is missing, expired or invalid")
        call_options = {
            **(options or {}),
            "session_id": session.session_id,
            "cookies": [cookie.model_dump() for cookie in session.cookies],
        }
        retries = self.settings.max_retries if max_retries is None else max_retries
        self.logger.info("scrape_started", url=target_url, policy=chosen.value, max_retries=retries)
        if chosen is ScrapePolicy.WATERFALL:
            return await self._waterfall(target_url, retries, call_options)
        return await self._aggregate(target_url, call_options)

    async def _waterfall(self, url: str, max_retries: int, options: dict[str, Any]) -> list[Offer]:
        primary_name, primary = self.backends.primary()
        last_error: OfferpipeError | None = None
        attempts = max_retries + 1
        for attempt in range(1, attempts + 1):
            if attempt > 1:
                await self._sleep(self.settings.base_delay * (attempt - 1))
            offers, error = await self._try_extract(primary_name, primary, url, options)
            if offers:
                return await self._finish(url, ScrapePolicy.WATERFALL, offers, {primary_name: len(offers)})
            last_error = error
            self.logger.warning(
                "primary_attempt_failed",
                backend=primary_name,
                attempt=attempt,
                attempts=attempts,
                error=str(error),
            )

        fallback = self.backends.fallback()
        if fallback is not None:
            fallback_name, fallback_backend = fallback
            offers, error = await self._try_extract(fallback_name, fallback_backend, url, options)
            if offers:
                self.logger.info("fallback_succeeded", backend=fallback_name, count=len(offers))
                return await self._finish(url, ScrapePolicy.WATERFALL, offers, {fallback_name: len(offers)})
            last_error = error
            self.logger.warning("fallback_failed", backend=fallback_name, error=str(error))
        raise last_error or EmptyResult(f"No offers extracted from {url}")

    async def _try_extract(
        self, name: str, backend: ExtractionBackend, url: str, options: dict[str, Any]
    ) -> tuple[list[Offer], OfferpipeError | None]:
        try:
            offers = list(await backend.extract(url, dict(options)))
        except Exception as exc:  # noqa: BLE001
            return [], BackendFailure(name, str(exc))
        if not offers:
            return [], EmptyResult(f"{name} returned no offers for {url}")
        return offers, None

    async def _aggregate(self, url: str, options: dict[str, Any]) -> list[Offer]:
        entries = list(self.backends.items())
        outcomes = await asyncio.gather(
            *(self._try_extract(name, backend, url, options) for name, backend in entries)
        )
        combined: list[Offer] = []
        counts: dict[str, int] = {}
        for (name, _), (offers, error) in zip(entries, outcomes):
            counts[name] = len(offers)
            if error is not None:
                self.logger.warning("aggregation_backend_failed", backend=name, error=str(error))
                continue
            combined.extend(offer.tagged(name) for offer in offers)
        if not combined:
            raise EmptyResult(f"No backend returned offers for {url}")
        return await self._finish(url, ScrapePolicy.AGGREGATION, combined, counts)

    async def _finish(
        self,
        url: str,
        policy: ScrapePolicy,
        offers: list[Offer],
        backend_results: dict[str, int],
    ) -> list[Offer]:
        result = self.deduplicator.run(offers)
        self.logger.info(
            "scrape_completed",
            url=url,
            policy=policy.value,
            total=len(result.offers),
            duplicates_removed=result.duplicates_removed,
        )
        await self._save_artifact(url, policy, result.offers, result.original_count, backend_results)
        return result.offers

    async def _save_artifact(
        self,
        url: str,
        policy: ScrapePolicy,
        offers: list[Offer],
        original_count: int,
        backend_results: dict[str, int],
    ) -> None:
        if self.artifact_store is None:
            return
        payload = {
            "url": url,
            "policy": policy.value,
            "timestamp": self._clock().isoformat(),
            "offers": [offer.model_dump(mode="json") for offer in offers],
            "total_found": len(offers),
            "original_count": original_count,
            "duplicates_removed": original_count - len(offers),
            "backend_results": backend_results,
        }
        try:
            key = await self.artifact_store.put(SCRAPE_ARTIFACT_NAMESPACE, payload)
        except Exception as exc:  # noqa: BLE001
            self.logger.error("artifact_save_failed", url=url, error=str(exc))
            return
        self.logger.debug("artifact_saved", key=key)


__all__ = ["Credentials", "Orchestrator", "SCRAPE_ARTIFACT_NAMESPACE"]
