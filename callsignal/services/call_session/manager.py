"""Call session registry."""
import logging
from typing import Dict, Optional

from callsignal.services.call_session.session import CallSession
from callsignal.services.ringback.audio import AudioBackend
from callsignal.services.store.calls import CallRecordStore
from callsignal.services.store.feed import ChangeFeed
from callsignal.services.store.messages import MessageStore
from callsignal.services.store.profiles import ProfileRepository

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns one call session per connected party."""

    def __init__(
        self,
        store: CallRecordStore,
        profiles: ProfileRepository,
        messages: MessageStore,
        feed: ChangeFeed,
        audio_backend: AudioBackend,
    ):
        self.store = store
        self.profiles = profiles
        self.messages = messages
        self.feed = feed
        self.audio_backend = audio_backend
        self._sessions: Dict[str, CallSession] = {}

    async def open(self, party_id: str) -> CallSession:
        """Open a session for a party, or return the one already open."""
        session = self._sessions.get(party_id)
        if session is not None:
            return session

        session = CallSession(
            party_id,
            store=self.store,
            profiles=self.profiles,
            messages=self.messages,
            feed=self.feed,
            audio_backend=self.audio_backend,
        )
        self._sessions[party_id] = session
        await session.open()
        return session

    def get(self, party_id: str) -> Optional[CallSession]:
        return self._sessions.get(party_id)

    def close(self, party_id: str) -> bool:
        """Close a party's session. Returns False if none was open."""
        session = self._sessions.pop(party_id, None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> None:
        for party_id in list(self._sessions):
            self.close(party_id)
        logger.info("[SESSION] All sessions closed")

    def __len__(self) -> int:
        return len(self._sessions)
