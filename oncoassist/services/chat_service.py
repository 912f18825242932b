"""
Conversational assistant for clinicians.

Each session keeps a transcript of ``{text, is_user}`` turns that starts with
a fixed welcome turn. A submission appends the clinician turn, forwards the
prior transcript to the inference client as context and appends the reply.

Session state machine::

    idle --submit--> awaiting_response --reply or error--> idle

A second submission while a call is in flight is rejected. On failure the
clinician turn stays in the transcript, no assistant turn is added and the
error propagates.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from uuid import uuid4

from oncoassist.config.config import get_settings
from oncoassist.config.logging_config import get_logger
from oncoassist.models.models import ChatTurn
from oncoassist.services.errors import SessionBusyError, SessionNotFoundError
from oncoassist.services.inference_client import InferenceClient, get_inference_client

logger = get_logger(__name__)


WELCOME_MESSAGE = (
    "Hello, Dr. I'm your Oncology Assist AI Assistant. "
    "How can I help with cancer patient analysis today?"
)


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"


@dataclass
class ChatSession:
    """One clinician conversation held in process memory."""
    session_id: str = field(default_factory=lambda: str(uuid4()))
    transcript: list[ChatTurn] = field(
        default_factory=lambda: [ChatTurn(text=WELCOME_MESSAGE, is_user=False)]
    )
    state: SessionState = SessionState.IDLE


class ConversationalAssistant:
    """
    Chat loop over the inference client.

    Sessions are created and looked up through an in-process registry holding
    at most ``max_sessions`` entries. When full, the oldest idle session is
    evicted; sessions awaiting a reply are never evicted.
    """

    def __init__(
        self,
        client: InferenceClient,
        timeout: float | None = None,
        max_sessions: int = 1000,
    ):
        self.client = client
        self.timeout = timeout
        self.max_sessions = max_sessions
        self._sessions: dict[str, ChatSession] = {}

    def create_session(self) -> ChatSession:
        if len(self._sessions) >= self.max_sessions:
            self._evict_oldest_idle()
        session = ChatSession()
        self._sessions[session.session_id] = session
        logger.info("Chat session created", session_id=session.session_id)
        return session

    def get_session(self, session_id: str) -> ChatSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id) from None

    def close_session(self, session_id: str) -> None:
        """
        Remove a session and its transcript.

        Raises:
            SessionNotFoundError: If the session id is unknown.
            SessionBusyError: If the session is awaiting a reply.
        """
        session = self.get_session(session_id)
        if session.state is SessionState.AWAITING_RESPONSE:
            raise SessionBusyError(session_id)
        del self._sessions[session_id]
        logger.info("Chat session closed", session_id=session_id)

    def _evict_oldest_idle(self) -> None:
        # dicts keep insertion order, so the first idle entry is the oldest
        for session_id, session in self._sessions.items():
            if session.state is SessionState.IDLE:
                del self._sessions[session_id]
                logger.info("Chat session evicted", session_id=session_id, active=len(self._sessions))
                return
        logger.warning("Chat session limit reached with no idle session", active=len(self._sessions))

    async def send_chat_turn(self, session: ChatSession, message: str) -> str:
        """
        Send a clinician message and return the assistant's reply.

        Args:
            session: The conversation to continue.
            message: The clinician's message.

        Returns:
            The reply text, also appended to the transcript.

        Raises:
            SessionBusyError: If the session is already awaiting a reply.
            TransportError: If the endpoint cannot be reached.
            MalformedResponseError: If the response carries no text.
        """
        if session.state is SessionState.AWAITING_RESPONSE:
            raise SessionBusyError(session.session_id)

        history = list(session.transcript)
        session.transcript.append(ChatTurn(text=message, is_user=True))
        session.state = SessionState.AWAITING_RESPONSE

        start_time = time.perf_counter()
        logger.info(
            "Processing chat message",
            session_id=session.session_id,
            message_length=len(message),
            history_turns=len(history),
        )

        try:
            reply = await self.client.chat(message, history, timeout=self.timeout)
        except Exception as e:
            logger.warning(
                "Chat turn failed",
                session_id=session.session_id,
                error_type=type(e).__name__,
            )
            raise
        finally:
            session.state = SessionState.IDLE

        session.transcript.append(ChatTurn(text=reply, is_user=False))
        logger.info(
            "Chat response generated",
            session_id=session.session_id,
            response_length=len(reply),
            processing_time_ms=int((time.perf_counter() - start_time) * 1000),
        )
        return reply


# Singleton instance
_assistant_instance: ConversationalAssistant | None = None


def get_assistant() -> ConversationalAssistant:
    """Get the singleton assistant over the configured inference client."""
    global _assistant_instance
    if _assistant_instance is None:
        settings = get_settings()
        _assistant_instance = ConversationalAssistant(
            get_inference_client(),
            timeout=settings.llm_timeout_seconds,
            max_sessions=settings.chat_max_sessions,
        )
    return _assistant_instance


def reset_assistant() -> None:
    """Drop the singleton assistant and its in-memory sessions."""
    global _assistant_instance
    _assistant_instance = None
