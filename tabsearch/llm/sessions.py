from __future__ import annotations

"""Purpose-keyed reuse of language model sessions."""

import asyncio
import logging

from tabsearch.llm.models import LanguageModel, SessionHandle

logger = logging.getLogger(__name__)

AVAILABILITY_PROMPT = "Availability check."


class SessionPool:
    """Cache one model session per purpose key.

    Concurrent requests for the same key await the in-flight creation instead
    of creating duplicate sessions.
    """
    def __init__(self, model: LanguageModel) -> None:
        self.model = model
        self.available: bool | None = None
        self._sessions: dict[str, SessionHandle] = {}
        self._pending: dict[str, asyncio.Task[SessionHandle | None]] = {}

    async def get(self, key: str, system_prompt: str) -> SessionHandle | None:
        """Return the cached session for ``key``, creating it once if needed."""
        session = self._sessions.get(key)
        if session is not None:
            return session
        task = self._pending.get(key)
        if task is None:
            logger.debug("llm_session_create", extra={"key": key})
            task = asyncio.ensure_future(self._create(key, system_prompt))
            self._pending[key] = task
        else:
            logger.debug("llm_session_wait", extra={"key": key})
        return await asyncio.shield(task)

    async def _create(self, key: str, system_prompt: str) -> SessionHandle | None:
        try:
            session = await self.model.create_session(system_prompt)
        finally:
            self._pending.pop(key, None)
        self.available = session is not None
        if session is not None:
            self._sessions[key] = session
        return session

    async def check_availability(self) -> bool:
        """Create and release a throwaway session to check the model."""
        session = await self.model.create_session(AVAILABILITY_PROMPT)
        if session is not None:
            await self.model.close_session(session)
        self.available = session is not None
        logger.info(
            "llm_availability",
            extra={"provider": self.model.provider, "available": self.available},
        )
        return self.available

    async def clear(self) -> None:
        """Release every cached session."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await self.model.close_session(session)
