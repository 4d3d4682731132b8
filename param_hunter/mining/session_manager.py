"""
Registry of running mining sessions.
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Union

from ..core.config import HTTPConfig, MiningConfig
from ..core.http_client import HttpxTransport, Transport
from ..core.logger import get_component_logger
from ..core.models import Request
from .param_miner import ParamMiner
from .wordlist import Wordlist

logger = get_component_logger("mining.session_manager")


class MiningSessionManager:
    """
    Starts sessions as asyncio tasks and controls them by id.

    Listeners can be attached to ``miner.events`` right after
    :meth:`start_session` returns; the session task does not run before the
    caller next yields to the event loop.
    """

    def __init__(self, http_config: Optional[HTTPConfig] = None):
        self.http_config = http_config or HTTPConfig()
        self.active_sessions: Dict[str, ParamMiner] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    async def start_session(
        self,
        config: MiningConfig,
        target: Request,
        wordlist: Union[Wordlist, Iterable[str]],
        transport: Optional[Transport] = None,
        session_id: Optional[str] = None,
    ) -> ParamMiner:
        """Create a session and schedule it on the running loop."""
        owned_transport = transport is None
        if owned_transport:
            transport = HttpxTransport(self.http_config)

        miner = ParamMiner(transport, target, config, wordlist, session_id=session_id)
        if miner.id in self.active_sessions:
            raise ValueError(f"Session {miner.id} already exists")

        self.active_sessions[miner.id] = miner
        self._tasks[miner.id] = asyncio.create_task(self._run_session(miner, owned_transport))

        logger.info(f"Started mining session {miner.id} for {target.url}")
        return miner

    async def _run_session(self, miner: ParamMiner, owned_transport: bool) -> None:
        try:
            await miner.start()
        except Exception as e:
            logger.exception(f"Mining session {miner.id} failed")
            miner.fail(f"Session failed: {e}")
        finally:
            if owned_transport:
                await miner.transport.close()
            logger.info(f"Mining session {miner.id} finished: {miner.state.value}")

    def get(self, session_id: str) -> Optional[ParamMiner]:
        return self.active_sessions.get(session_id)

    def _require(self, session_id: str) -> ParamMiner:
        miner = self.active_sessions.get(session_id)
        if miner is None:
            raise KeyError(f"Unknown session {session_id}")
        return miner

    def pause(self, session_id: str) -> None:
        self._require(session_id).pause()

    def resume(self, session_id: str) -> None:
        self._require(session_id).resume()

    def cancel(self, session_id: str) -> None:
        self._require(session_id).cancel()

    async def wait(self, session_id: str) -> ParamMiner:
        """Wait until the session's task ends and return the session."""
        miner = self._require(session_id)
        await self._tasks[session_id]
        return miner

    def remove(self, session_id: str) -> bool:
        """Forget a finished session; running sessions are canceled first."""
        miner = self.active_sessions.pop(session_id, None)
        if miner is None:
            return False
        miner.cancel()
        self._tasks.pop(session_id, None)
        logger.info(f"Removed mining session {session_id}")
        return True

    def sessions(self) -> List[ParamMiner]:
        return list(self.active_sessions.values())

    def get_all_sessions(self) -> List[Dict[str, object]]:
        """Summary of every known session."""
        return [
            {
                "id": miner.id,
                "target": miner.target.url,
                "state": miner.state.value,
                "phase": miner.phase.value,
                "requests_sent": miner.requests_sent,
                "findings": len(miner.findings),
            }
            for miner in self.active_sessions.values()
        ]
