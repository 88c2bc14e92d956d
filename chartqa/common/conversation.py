"""
Conversation Context

Ordered question/answer history per session, and the helpers that turn it
into the context string handed to the query enhancer and the synthesizer.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Protocol

NO_HISTORY = "No previous conversation."

# Topic label -> words that signal it
TOPIC_KEYWORDS = {
    "symptoms": ("symptom", "pain", "cough"),
    "medications": ("medication", "prescription", "drug"),
    "causes": ("cause", "reason"),
    "complications": ("side effect", "issue", "problem"),
}


@dataclass
class Turn:
    """A single message in a session conversation"""
    role: str  # "user" or "assistant"
    content: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_user(self) -> bool:
        return self.role == "user"


class ConversationStore(Protocol):
    """Conversation context provider"""

    def get_recent_turns(self, session_id: str, max_exchanges: int = 3) -> List[Turn]:
        ...

    def get_history(self, session_id: str) -> List[Turn]:
        ...


class InMemoryConversationStore:
    """Process-local conversation history"""

    def __init__(self):
        self._history: Dict[str, List[Turn]] = {}

    def add_interaction(self, session_id: str, question: str, answer: str) -> None:
        turns = self._history.setdefault(session_id, [])
        turns.append(Turn(role="user", content=question))
        turns.append(Turn(role="assistant", content=answer))

    def get_history(self, session_id: str) -> List[Turn]:
        return list(self._history.get(session_id, []))

    def get_recent_turns(self, session_id: str, max_exchanges: int = 3) -> List[Turn]:
        """Last N exchanges (each exchange = user turn + assistant turn)"""
        if max_exchanges <= 0:
            return []
        return self.get_history(session_id)[-max_exchanges * 2:]

    def delete_session(self, session_id: str) -> bool:
        return self._history.pop(session_id, None) is not None


def summarize_conversation(history: List[Turn]) -> str:
    """Topic summary of the last three exchanges plus the last user question"""
    if not history:
        return NO_HISTORY

    messages = history[-6:]
    topics: List[str] = []
    for msg in messages:
        content = msg.content.lower()
        for topic, keywords in TOPIC_KEYWORDS.items():
            if topic not in topics and any(k in content for k in keywords):
                topics.append(topic)

    summary = "Recent conversation topics: "
    summary += ", ".join(topics) + "." if topics else "general medical discussion."

    last_user = next((m for m in reversed(messages) if m.is_user), None)
    if last_user:
        summary += f' Last question was about: "{last_user.content[:50]}..."'

    return summary


def format_chat_history(history: List[Turn]) -> str:
    """Render turns as a User/Assistant transcript for prompts"""
    if not history:
        return NO_HISTORY

    lines = [
        f"{'User' if turn.is_user else 'Assistant'}: {turn.content}"
        for turn in history
    ]
    return (
        "CONVERSATION CONTEXT:\n"
        + "\n".join(lines)
        + "\n\nIMPORTANT: Use this conversation history to understand context. "
        "If the current question is short or unclear, refer to this history "
        "to understand what the user is asking about."
    )


def build_hyde_context(history: List[Turn], recent: List[Turn]) -> str:
    """Context string for query enhancement; empty when there is no history"""
    if not history and not recent:
        return ""
    return f"{summarize_conversation(history)}\n\nRecent conversation: {format_chat_history(recent)}"
