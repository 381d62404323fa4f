"""
auth/service.py -- The trust-decision pipeline.

AuthService ties the components together for every registration, login,
renewal and logout request, decides whether to accept it, mutates the
SessionStore accordingly and attaches the risk signal.

Per-request flow:
  HoneypotGuard (reject bots) -> CredentialVault (verify/hash) ->
  DeviceFingerprinter (identify device) -> AnomalyScorer (score risk) ->
  decision (allow / block) -> SessionStore mutation -> token issuance

Session lifecycle: pending -> active -> (renewed)* -> terminated. A
terminated session is absorbing: its tokens are never accepted again.

Security design decisions:
  [T1] Unknown emails are verified against CredentialVault.dummy_hash so an
       absent account costs the same bcrypt work as a wrong password.
  [T2] login() and renew() are padded to a minimum handling time on both the
       success and failure paths (min_login_duration_ms / min_renew_duration_ms).
  [R1] renew() collapses every rejection into InvalidRefreshToken. The specific
       reason (expired, tampered, wrong device, inactive session) goes to the
       log and the audit trail only.
  [R2] A device mismatch on renewal refuses the renewal but leaves the
       session active with its current tokens.
  [S1] Mutations of one session (renew, logout, terminate) are serialized
       through a per-session lock; different sessions never contend.

Failure policy: SecurityRejection subclasses are decisions and are raised as
is. StorageUnavailable from the store is never caught here, so callers can
tell "denied" apart from "unavailable".

bcrypt work runs in a worker thread (asyncio.to_thread) so a burst of logins
does not stall the event loop.

Layer rule: depends on store.base.SessionStore only, never on a concrete
backend. No imports from api/.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

from auth.anomaly import AnomalyScorer
from auth.attempts import LoginAttemptTracker
from auth.fingerprint import DeviceFingerprinter
from auth.honeypot import DECOY_NAMES, HoneypotGuard
from auth.locks import KeyedLock
from auth.models import (
    AuditRecord,
    BlockedIP,
    HoneypotChallenge,
    LoginAttempt,
    LoginResult,
    PasswordComplexity,
    Principal,
    RequestContext,
    RevokedToken,
    RiskLevel,
    Session,
    SessionSummary,
    TokenPair,
    User,
    UserProfile,
)
from auth.passwords import CredentialVault
from auth.tokens import TokenIssuer
from core.config import Settings
from core.errors import (
    BotDetected,
    DeviceMismatch,
    DuplicateUser,
    InvalidCredentials,
    InvalidInput,
    InvalidRefreshToken,
    InvalidSession,
    InvalidToken,
    SecurityBlock,
    SecurityRejection,
    WeakPassword,
)
from store.base import SessionStore

logger = logging.getLogger("trustgate.auth")

MAX_DISPLAY_NAME_LENGTH = 255


def _now() -> datetime:
    return datetime.now(timezone.utc)


@asynccontextmanager
async def min_duration(milliseconds: int) -> AsyncIterator[None]:
    """Pad the wrapped block to at least `milliseconds`, even when it raises [T2]."""
    started = time.perf_counter()
    try:
        yield
    finally:
        remaining = milliseconds / 1000 - (time.perf_counter() - started)
        if remaining > 0:
            await asyncio.sleep(remaining)


def _validate_email(email: Any) -> str:
    if not isinstance(email, str) or "@" not in email or len(email) > 320 or email != email.strip():
        raise InvalidInput("A valid email address is required.")
    local, _, domain = email.partition("@")
    if not local or "." not in domain:
        raise InvalidInput("A valid email address is required.")
    return email


def _validate_display_name(display_name: Any) -> str:
    if not isinstance(display_name, str) or not display_name.strip():
        raise InvalidInput("A display name is required.")
    if len(display_name) > MAX_DISPLAY_NAME_LENGTH:
        raise InvalidInput("Display name is too long.")
    return display_name.strip()


class AuthService:
    """Usage:
    service = AuthService.from_settings(get_settings(), MemoryStore())
    profile = await service.register("a@x.com", "Str0ng!Pass", "A", context)
    result = await service.login("a@x.com", "Str0ng!Pass", context)
    """

    def __init__(
        self,
        store: SessionStore,
        vault: CredentialVault,
        issuer: TokenIssuer,
        fingerprinter: DeviceFingerprinter,
        honeypot: HoneypotGuard,
        anomaly: AnomalyScorer,
        attempts: LoginAttemptTracker,
        session_ttl: timedelta = timedelta(hours=24),
        ip_block_ttl: timedelta = timedelta(hours=24),
        min_login_duration_ms: int = 200,
        min_renew_duration_ms: int = 100,
    ) -> None:
        self.store = store
        self.vault = vault
        self.issuer = issuer
        self.fingerprinter = fingerprinter
        self.honeypot = honeypot
        self.anomaly = anomaly
        self.attempts = attempts
        self.session_ttl = session_ttl
        self.ip_block_ttl = ip_block_ttl
        self.min_login_duration_ms = min_login_duration_ms
        self.min_renew_duration_ms = min_renew_duration_ms
        self._session_locks = KeyedLock()

    @classmethod
    def from_settings(cls, settings: Settings, store: SessionStore) -> "AuthService":
        return cls(
            store=store,
            vault=CredentialVault.from_settings(settings),
            issuer=TokenIssuer.from_settings(settings),
            fingerprinter=DeviceFingerprinter(),
            honeypot=HoneypotGuard(
                min_fill_ms=settings.honeypot_min_fill_ms,
                max_strikes=settings.honeypot_max_strikes,
                strike_ttl_seconds=settings.honeypot_strike_ttl_seconds,
            ),
            anomaly=AnomalyScorer(
                threshold=settings.anomaly_threshold,
                min_logins=settings.anomaly_min_logins,
                distance_km=settings.anomaly_distance_km,
                max_speed_kmh=settings.anomaly_max_speed_kmh,
                hour_window=settings.anomaly_hour_window,
                history_size=settings.anomaly_history_size,
            ),
            attempts=LoginAttemptTracker(
                max_attempts=settings.max_login_attempts,
                lockout_seconds=settings.login_lockout_seconds,
            ),
            session_ttl=timedelta(seconds=settings.session_ttl_seconds),
            ip_block_ttl=timedelta(seconds=settings.ip_block_seconds),
            min_login_duration_ms=settings.min_login_duration_ms,
            min_renew_duration_ms=settings.min_renew_duration_ms,
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(
        self,
        email: str,
        password: str,
        display_name: str,
        context: RequestContext,
        form: Mapping[str, Any] | None = None,
    ) -> UserProfile:
        """Create a user after the bot, duplicate and complexity checks.

        `form` carries the honeypot fields exactly as submitted (decoy values
        and form_timestamp); only those keys and the credentials are
        evaluated, so a client that skips the decoys and fills everything
        else trips the every-field-populated rule. Without a form (in-process
        callers that never rendered one) the decoys count as present and empty.
        """
        submission: dict[str, Any] = {name: "" for name in DECOY_NAMES} if form is None else dict(form)
        submission.update(email=email, password=password, display_name=display_name)
        verdict = self.honeypot.evaluate_submission(submission, context.ip)
        if verdict.is_bot:
            violations = [v.type for v in verdict.violations]
            logger.warning("Registration from %s rejected as bot: %s", context.ip, violations)
            await self._audit(
                "BOT_DETECTED",
                context,
                metadata={"violations": violations, "trust_score": verdict.trust_score},
            )
            raise BotDetected(reason=f"honeypot violations {violations}")

        email = _validate_email(email)
        display_name = _validate_display_name(display_name)
        if await self.store.get_user_by_email(email) is not None:
            raise DuplicateUser(reason=f"email {email!r} already registered")

        complexity = self.vault.score_password_complexity(password)
        if not complexity.valid:
            raise WeakPassword(criteria=complexity.criteria, reason=f"score {complexity.score}")

        password_hash = await asyncio.to_thread(self.vault.hash, password)
        device = self.fingerprinter.fingerprint(context)
        now = _now()
        user = await self.store.create_user(
            User(
                id=str(uuid.uuid4()),
                email=email,
                password_hash=password_hash,
                display_name=display_name,
                created_at=now,
                updated_at=now,
            )
        )
        await self._audit(
            "REGISTER",
            context,
            user_id=user.id,
            metadata={"fingerprint": device.id, "user_agent": context.user_agent},
        )
        logger.info("Registered user %s", user.id)
        return UserProfile.from_user(user)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str, context: RequestContext) -> LoginResult:
        async with min_duration(self.min_login_duration_ms):
            return await self._login(email, password, context)

    async def _login(self, email: str, password: str, context: RequestContext) -> LoginResult:
        blocked = await self.store.get_blocked_ip(context.ip)
        if blocked is not None:
            raise SecurityBlock(reason=f"ip {context.ip} blocked: {blocked.reason}")
        await self.attempts.check(context.ip)

        user = await self.store.get_user_by_email(email) if isinstance(email, str) else None
        hashed = user.password_hash if user is not None else self.vault.dummy_hash  # [T1]
        password_ok = await asyncio.to_thread(self.vault.verify, password if isinstance(password, str) else "", hashed)

        if user is None or not password_ok or not user.is_active:
            failures = await self.attempts.record_failure(context.ip)
            reason = "unknown email" if user is None else ("inactive user" if password_ok else "wrong password")
            logger.info("Login failure from %s (%s, attempt %d)", context.ip, reason, failures)
            await self._audit(
                "LOGIN_FAILURE",
                context,
                metadata={"email": email, "attempts": failures, "reason": reason},
            )
            raise InvalidCredentials(reason=reason)

        device = self.fingerprinter.fingerprint(context)
        device_risk = self.fingerprinter.analyze_risk(device.components, context.device.cookies_enabled)
        analysis = await self.anomaly.score_login_attempt(
            user.id,
            LoginAttempt(
                ip=context.ip,
                timestamp_ms=int(time.time() * 1000),
                fingerprint=device.id,
                user_agent=context.user_agent,
                location=context.location,
            ),
        )
        reasons = [r.type for r in analysis.reasons]

        if analysis.is_anomalous and analysis.risk_level == RiskLevel.CRITICAL:
            now = _now()
            await self.store.block_ip(
                BlockedIP(
                    ip=context.ip,
                    reason="Critical login anomaly",
                    blocked_at=now,
                    expires_at=now + self.ip_block_ttl,
                )
            )
            await self._audit(
                "IP_BLOCKED",
                context,
                user_id=user.id,
                metadata={"blocked_ip": context.ip, "score": analysis.score, "anomalies": reasons},
            )
            logger.warning("Blocked %s after critical anomaly for user %s: %s", context.ip, user.id, reasons)
            raise SecurityBlock(reason=f"critical anomaly score {analysis.score:.2f}")

        pair = self.issuer.issue_pair(user.id, user.email, device.id)
        now = _now()
        session = await self.store.create_session(
            Session(
                id=uuid.uuid4().hex,
                user_id=user.id,
                access_token=pair.access_token,
                refresh_token=pair.refresh_token,
                fingerprint=device.id,
                ip=context.ip,
                user_agent=context.user_agent,
                created_at=now,
                updated_at=now,
                expires_at=now + self.session_ttl,
            )
        )
        await self.attempts.reset(context.ip)
        await self._audit(
            "LOGIN_SUCCESS",
            context,
            user_id=user.id,
            metadata={
                "session_id": session.id,
                "fingerprint": device.id,
                "risk_level": analysis.risk_level.value,
                "anomalies": reasons,
                "device_risk": device_risk.level.value,
            },
        )
        return LoginResult(
            user=UserProfile.from_user(user),
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            session_id=session.id,
            risk_level=analysis.risk_level,
            device_confidence=device.confidence,
            anomaly_reasons=reasons,
        )

    # ------------------------------------------------------------------
    # Renewal
    # ------------------------------------------------------------------

    async def renew(self, refresh_token: str, context: RequestContext) -> TokenPair:
        async with min_duration(self.min_renew_duration_ms):
            user_id: str | None = None
            try:
                claims = self.issuer.verify_refresh_token(refresh_token)
                user_id = claims.user_id
                pair, session_id = await self._rotate(claims.user_id, refresh_token, context)
            except SecurityRejection as exc:
                # [R1]
                logger.info("Token renewal refused from %s: %s (%s)", context.ip, exc.kind, exc.reason)
                await self._audit(
                    "TOKEN_RENEWAL_FAILURE",
                    context,
                    user_id=user_id,
                    metadata={"kind": exc.kind, "reason": exc.reason},
                )
                raise InvalidRefreshToken(reason=f"{exc.kind}: {exc.reason}") from None
        await self._audit("TOKEN_RENEWAL", context, user_id=user_id, metadata={"session_id": session_id})
        return pair

    async def _rotate(self, user_id: str, refresh_token: str, context: RequestContext) -> tuple[TokenPair, str]:
        candidate = await self._find_session(user_id, refresh_token=refresh_token)
        if candidate is None:
            raise InvalidSession(reason="no active session holds this refresh token")

        async with self._session_locks(candidate.id):  # [S1]
            session = await self.store.get_session(candidate.id)
            if session is None or session.refresh_token != refresh_token:
                raise InvalidSession(reason="refresh token already rotated")
            if not session.is_usable(_now()):
                raise InvalidSession(reason="session inactive or expired")

            device = self.fingerprinter.fingerprint(context)
            if device.id != session.fingerprint:
                raise DeviceMismatch(reason=f"session {session.id} bound to another device")  # [R2]

            user = await self.store.get_user_by_id(user_id)
            if user is None or not user.is_active:
                raise InvalidSession(reason="user missing or inactive")

            pair = self.issuer.issue_pair(user.id, user.email, device.id)
            await self.store.update_session(
                session.id,
                access_token=pair.access_token,
                refresh_token=pair.refresh_token,
            )
        return pair, session.id

    # ------------------------------------------------------------------
    # Logout / authentication
    # ------------------------------------------------------------------

    async def logout(self, access_token: str, context: RequestContext) -> bool:
        """Deactivate the token's session (if any) and revoke the token.

        Idempotent: a second logout with the same still-valid token succeeds.
        """
        claims = self.issuer.verify_access_token(access_token)
        session = await self._find_session(claims.user_id, access_token=access_token)
        if session is not None:
            async with self._session_locks(session.id):
                await self.store.update_session(session.id, is_active=False, ended_at=_now())
        await self.store.revoke_token(RevokedToken(token=access_token, revoked_at=_now(), reason="LOGOUT"))
        await self._audit(
            "LOGOUT",
            context,
            user_id=claims.user_id,
            metadata={"session_id": session.id if session else None},
        )
        return True

    async def authenticate(self, access_token: str) -> Principal:
        """Resolve an access token to its user and live session.

        Raises InvalidToken when the token is malformed, expired, revoked, not
        held by an active session, or owned by an inactive user.
        """
        claims = self.issuer.verify_access_token(access_token)
        if await self.store.is_token_revoked(access_token):
            raise InvalidToken(reason="token revoked")
        session = await self._find_session(claims.user_id, access_token=access_token)
        if session is None or not session.is_usable(_now()):
            raise InvalidToken(reason="no live session for token")
        user = await self.store.get_user_by_id(claims.user_id)
        if user is None or not user.is_active:
            raise InvalidToken(reason="user missing or inactive")
        return Principal(user=user, session=session, claims=claims)

    async def _find_session(
        self,
        user_id: str,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
    ) -> Session | None:
        for session in await self.store.list_user_sessions(user_id):
            if not session.is_active:
                continue
            if access_token is not None and session.access_token == access_token:
                return session
            if refresh_token is not None and session.refresh_token == refresh_token:
                return session
        return None

    # ------------------------------------------------------------------
    # Account management
    # ------------------------------------------------------------------

    async def get_profile(self, user_id: str) -> UserProfile:
        return UserProfile.from_user(await self._require_user(user_id))

    async def update_profile(
        self,
        user_id: str,
        context: RequestContext,
        display_name: str | None = None,
        email: str | None = None,
    ) -> UserProfile:
        user = await self._require_user(user_id)
        changes: dict[str, Any] = {}
        if display_name is not None:
            changes["display_name"] = _validate_display_name(display_name)
        if email is not None and email != user.email:
            email = _validate_email(email)
            if await self.store.get_user_by_email(email) is not None:
                raise DuplicateUser(reason=f"email {email!r} already registered")
            changes["email"] = email
        if not changes:
            return UserProfile.from_user(user)

        updated = await self.store.update_user(user_id, **changes)
        if updated is None:
            raise InvalidSession(reason=f"user {user_id} disappeared during update")
        await self._audit("PROFILE_UPDATED", context, user_id=user_id, metadata={"fields": sorted(changes)})
        return UserProfile.from_user(updated)

    async def change_password(
        self, user_id: str, current_password: str, new_password: str, context: RequestContext
    ) -> int:
        """Replace the password and end every active session of the user.

        Returns the number of sessions that were terminated.
        """
        user = await self._require_user(user_id)
        if not await asyncio.to_thread(self.vault.verify, current_password, user.password_hash):
            raise InvalidCredentials(reason="current password mismatch")

        complexity = self.vault.score_password_complexity(new_password)
        if not complexity.valid:
            raise WeakPassword(criteria=complexity.criteria, reason=f"score {complexity.score}")

        password_hash = await asyncio.to_thread(self.vault.hash, new_password)
        await self.store.update_user(user_id, password_hash=password_hash)

        terminated = 0
        for session in await self.store.list_user_sessions(user_id):
            if session.is_active:
                await self._end_session(session.id, "PASSWORD_CHANGED")
                terminated += 1
        await self._audit("PASSWORD_CHANGED", context, user_id=user_id, metadata={"sessions_terminated": terminated})
        logger.info("Password changed for user %s; %d sessions terminated", user_id, terminated)
        return terminated

    async def list_sessions(self, user_id: str, current_session_id: str | None = None) -> list[SessionSummary]:
        now = _now()
        sessions = [s for s in await self.store.list_user_sessions(user_id) if s.is_usable(now)]
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return [
            SessionSummary(
                id=s.id,
                ip=s.ip,
                user_agent=s.user_agent,
                created_at=s.created_at,
                updated_at=s.updated_at,
                expires_at=s.expires_at,
                current=s.id == current_session_id,
            )
            for s in sessions
        ]

    async def terminate_session(self, user_id: str, session_id: str, context: RequestContext) -> None:
        session = await self.store.get_session(session_id)
        if session is None or session.user_id != user_id or not session.is_active:
            raise InvalidSession(reason=f"session {session_id} not owned by {user_id} or already ended")
        await self._end_session(session_id, "SESSION_TERMINATED")
        await self._audit("SESSION_TERMINATED", context, user_id=user_id, metadata={"session_id": session_id})

    async def list_activity(self, user_id: str, limit: int = 50, offset: int = 0) -> list[AuditRecord]:
        return await self.store.list_audit(user_id=user_id, limit=limit, offset=offset)

    async def _end_session(self, session_id: str, reason: str) -> None:
        async with self._session_locks(session_id):
            session = await self.store.get_session(session_id)
            if session is None or not session.is_active:
                return
            now = _now()
            await self.store.update_session(session_id, is_active=False, ended_at=now)
            for token in (session.access_token, session.refresh_token):
                await self.store.revoke_token(RevokedToken(token=token, revoked_at=now, reason=reason))

    async def _require_user(self, user_id: str) -> User:
        user = await self.store.get_user_by_id(user_id)
        if user is None:
            raise InvalidSession(reason=f"user {user_id} not found")
        return user

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def block_ip(
        self, ip: str, reason: str, context: RequestContext, duration_seconds: int | None = None
    ) -> BlockedIP:
        now = _now()
        entry = BlockedIP(
            ip=ip,
            reason=reason,
            blocked_at=now,
            expires_at=now + timedelta(seconds=duration_seconds) if duration_seconds else None,
        )
        await self.store.block_ip(entry)
        await self._audit(
            "IP_BLOCKED",
            context,
            metadata={"blocked_ip": ip, "reason": reason, "duration_seconds": duration_seconds},
        )
        logger.warning("IP %s blocked by administrator: %s", ip, reason)
        return entry

    async def unblock_ip(self, ip: str, context: RequestContext) -> bool:
        removed = await self.store.unblock_ip(ip)
        if removed:
            await self._audit("IP_UNBLOCKED", context, metadata={"blocked_ip": ip})
        return removed

    async def release_bot_ip(self, ip: str, context: RequestContext) -> None:
        self.honeypot.release(ip)
        await self._audit("BOT_IP_RELEASED", context, metadata={"released_ip": ip})

    def honeypot_stats(self) -> dict[str, int]:
        return self.honeypot.stats()

    def honeypot_challenge(self) -> HoneypotChallenge:
        return self.honeypot.decoy_fields()

    def check_password_strength(self, password: str) -> PasswordComplexity:
        return self.vault.score_password_complexity(password)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def _audit(
        self,
        action: str,
        context: RequestContext,
        user_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.store.write_audit(
            AuditRecord(
                action=action,
                ip=context.ip,
                timestamp=_now(),
                user_id=user_id,
                metadata=metadata or {},
            )
        )
