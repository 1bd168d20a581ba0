"""
Agent Query Service — one timed call to one external agent.

Before calling, credentials expiring within the grace window are refreshed
under a per-agent lease: the holder refreshes and persists, everyone else
waits once and re-reads the stored credential. Refresh failures and
authorization errors circuit-break the agent. Every outcome, success or
failure, is returned as data with its elapsed latency; nothing is raised
into the caller's batch.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from app.config import settings
from app.db import keys
from app.db.agents import AgentDirectory
from app.db.base import StorageAdapter
from app.models.schemas import AgentQueryOutcome, AgentRecord, FailureKind
from app.services.agent_client import (
    AgentAuthError,
    AgentPlatformClient,
    TokenRefreshError,
)
from app.services.lock import Lease

logger = logging.getLogger(__name__)


class AgentQueryService:
    def __init__(
        self,
        store: StorageAdapter,
        client: Optional[AgentPlatformClient] = None,
        directory: Optional[AgentDirectory] = None,
        refresh_grace_seconds: Optional[int] = None,
        lock_ttl_seconds: Optional[int] = None,
        lock_wait_seconds: Optional[float] = None,
        circuit_breaker_minutes: Optional[int] = None,
    ):
        self.store = store
        self.client = client or AgentPlatformClient()
        self.directory = directory or AgentDirectory(store)
        self.refresh_grace_seconds = (
            settings.token_refresh_grace_seconds if refresh_grace_seconds is None else refresh_grace_seconds
        )
        self.lock_ttl_seconds = lock_ttl_seconds or settings.refresh_lock_ttl_seconds
        self.lock_wait_seconds = (
            settings.refresh_lock_wait_seconds if lock_wait_seconds is None else lock_wait_seconds
        )
        self.circuit_breaker_minutes = circuit_breaker_minutes or settings.circuit_breaker_minutes

    async def query(
        self,
        agent: AgentRecord,
        question: str,
        system_prompt: str,
        timeout: Optional[float] = None,
    ) -> AgentQueryOutcome:
        """
        Ask one agent one question.

        Args:
            agent: An eligible agent record
            question: The asker's question
            system_prompt: Round-specific instructions
            timeout: Per-call timeout in seconds (defaults to the initial-round timeout)

        Returns:
            AgentQueryOutcome; ``failure`` is None on success
        """
        timeout = timeout or settings.agent_timeout_seconds
        start = time.monotonic()

        def _elapsed() -> int:
            return int((time.monotonic() - start) * 1000)

        try:
            access_token = await self._fresh_access_token(agent)
        except TokenRefreshError as e:
            logger.error(f"Agent {agent.id} credential refresh failed ({_elapsed()}ms): {e}")
            await self._circuit_break(agent.id)
            return AgentQueryOutcome(
                agent_id=agent.id,
                latency_ms=_elapsed(),
                failure=FailureKind.REFRESH_FAILED,
                error=str(e),
            )

        try:
            reply = await asyncio.wait_for(
                self.client.chat(access_token, question, system_prompt), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"Agent {agent.id} timed out after {_elapsed()}ms")
            return AgentQueryOutcome(
                agent_id=agent.id,
                latency_ms=_elapsed(),
                failure=FailureKind.TIMEOUT,
                error=f"No answer within {timeout:.0f}s",
            )
        except AgentAuthError as e:
            logger.error(f"Agent {agent.id} authorization failed ({_elapsed()}ms): {e}")
            await self._circuit_break(agent.id)
            return AgentQueryOutcome(
                agent_id=agent.id,
                latency_ms=_elapsed(),
                failure=FailureKind.AUTH_FAILURE,
                error=str(e),
            )
        except Exception as e:
            logger.error(f"Agent {agent.id} query failed ({_elapsed()}ms): {type(e).__name__}: {e}")
            return AgentQueryOutcome(
                agent_id=agent.id,
                latency_ms=_elapsed(),
                failure=FailureKind.CALL_FAILED,
                error=f"{type(e).__name__}: {e}",
            )

        return AgentQueryOutcome(
            agent_id=agent.id,
            text=reply.text,
            session_id=reply.session_id,
            latency_ms=_elapsed(),
        )

    async def _circuit_break(self, agent_id: str) -> None:
        try:
            await self.directory.circuit_break(agent_id, self.circuit_breaker_minutes)
        except Exception as e:
            logger.warning(f"Could not circuit-break agent {agent_id}: {type(e).__name__}: {e}")

    def _outside_grace(self, expiry: float) -> bool:
        return expiry > time.time() + self.refresh_grace_seconds

    async def _fresh_access_token(self, agent: AgentRecord) -> str:
        """
        Return a usable access token, refreshing it if it expires within the
        grace window.

        Raises:
            TokenRefreshError: refresh failed, the store was unavailable, or
                another holder's refresh did not leave a fresh credential behind
        """
        if self._outside_grace(agent.token_expiry):
            return agent.access_token

        lease = Lease(self.store, keys.refresh_lock(agent.id), self.lock_ttl_seconds)
        try:
            acquired = await lease.acquire()
        except Exception as e:
            raise TokenRefreshError(f"Refresh lock unavailable: {type(e).__name__}: {e}") from e

        if acquired:
            try:
                tokens = await self.client.refresh_tokens(agent.refresh_token)
                await self.directory.update_tokens(
                    agent.id, tokens.access_token, tokens.refresh_token, tokens.expires_in
                )
                logger.info(f"Refreshed credentials for agent {agent.id}")
                return tokens.access_token
            except TokenRefreshError:
                raise
            except Exception as e:
                raise TokenRefreshError(f"{type(e).__name__}: {e}") from e
            finally:
                try:
                    await lease.release()
                except Exception as e:
                    logger.warning(f"Could not release refresh lock for agent {agent.id}: {e}")

        logger.info(f"Refresh for agent {agent.id} already in progress, waiting")
        await asyncio.sleep(self.lock_wait_seconds)
        try:
            current = await self.directory.get_agent(agent.id)
        except Exception as e:
            raise TokenRefreshError(f"Could not re-read credential: {type(e).__name__}: {e}") from e
        # The old credential is still stored while the holder's refresh is in flight
        if current and self._outside_grace(current.token_expiry):
            return current.access_token
        raise TokenRefreshError("Concurrent refresh did not produce a fresh credential")
