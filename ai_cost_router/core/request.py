"""
Request and response value types.

AIRequest is what callers hand to the dispatcher; AIResponse is what they
get back. Both are plain dataclasses so they serialize through asdict().
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from .catalog import FeatureType, Priority
from .errors import AuthError, ValidationError

MAX_HISTORY_TURNS = 10


@dataclass(frozen=True)
class ConversationTurn:
    role: str
    content: str


@dataclass(frozen=True)
class FileAttachment:
    """Inline file payload for vision requests."""
    mime_type: str
    base64: str
    filename: str = "file"


@dataclass(frozen=True)
class Goal:
    id: str
    text: str
    term: str = "short"
    status: str = "active"


@dataclass(frozen=True)
class TaskRef:
    id: str
    title: str
    status: str = "pending"
    description: Optional[str] = None


@dataclass(frozen=True)
class NoteRef:
    id: str
    title: str
    content: str = ""
    tags: tuple = ()


@dataclass(frozen=True)
class ProfileContext:
    """Caller-supplied profile hints used for prompting, not for quota."""
    personality_mode: Optional[str] = None
    display_name: Optional[str] = None


@dataclass(frozen=True)
class RequestContext:
    conversation_history: List[ConversationTurn] = field(default_factory=list)
    user_goals: List[Goal] = field(default_factory=list)
    recent_tasks: List[TaskRef] = field(default_factory=list)
    recent_notes: List[NoteRef] = field(default_factory=list)
    user_profile: Optional[ProfileContext] = None
    current_time: Optional[datetime] = None
    location: Optional[str] = None

    def recent_history(self, limit: int = MAX_HISTORY_TURNS) -> List[ConversationTurn]:
        """Most recent turns, oldest first."""
        if limit <= 0:
            return []
        return list(self.conversation_history[-limit:])


@dataclass(frozen=True)
class AIRequest:
    """Single-use request accepted by the dispatcher."""
    user_id: str
    message: str
    feature_type: FeatureType = FeatureType.QUICK_CHAT
    priority: Priority = Priority.MEDIUM
    context: RequestContext = field(default_factory=RequestContext)
    files: List[FileAttachment] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AIRequest":
        """Build a request from a loosely typed payload.

        Both camelCase and snake_case keys are accepted.

        Raises:
            AuthError: If no user id is present
            ValidationError: If a required field is missing or invalid
        """
        data = _mapping(data, "request")
        if not data.get("userId") and not data.get("user_id"):
            raise AuthError("User not authenticated")
        raw_context = _mapping(data.get("context") or {}, "context")
        history = [
            ConversationTurn(role=str(turn.get("role", "user")), content=str(turn.get("content", "")))
            for turn in _items(raw_context, "conversationHistory", "conversation_history")
        ]
        goals = [
            Goal(id=str(g.get("id", "")), text=str(g.get("text", "")),
                 term=g.get("term", "short"), status=g.get("status", "active"))
            for g in _items(raw_context, "userGoals", "user_goals")
        ]
        tasks = [
            TaskRef(id=str(t.get("id", "")), title=str(t.get("title", "")),
                    status=t.get("status", "pending"), description=t.get("description"))
            for t in _items(raw_context, "recentTasks", "recent_tasks")
        ]
        notes = [
            NoteRef(id=str(n.get("id", "")), title=str(n.get("title", "")),
                    content=str(n.get("content", "")), tags=tuple(n.get("tags", []) or ()))
            for n in _items(raw_context, "recentNotes", "recent_notes")
        ]
        files = [
            FileAttachment(
                mime_type=str(f.get("mimeType", f.get("mime_type", ""))),
                base64=str(f.get("base64", "")),
                filename=str(f.get("filename", "file")),
            )
            for f in _items(data, "files", "files")
        ]
        try:
            feature = FeatureType.parse(data.get("featureType", data.get("feature_type", "quick_chat")))
            priority = Priority.parse(data.get("priority"))
        except ValueError as e:
            raise ValidationError(str(e))

        request = cls(
            user_id=str(data.get("userId") or data.get("user_id")),
            message=data.get("message") or "",
            feature_type=feature,
            priority=priority,
            context=RequestContext(
                conversation_history=history,
                user_goals=goals,
                recent_tasks=tasks,
                recent_notes=notes,
                user_profile=_profile_context(raw_context.get("userProfile", raw_context.get("user_profile"))),
                current_time=_timestamp(raw_context.get("currentTime", raw_context.get("current_time"))),
                location=raw_context.get("location"),
            ),
            files=files,
        )
        request.validate()
        return request

    def validate(self) -> None:
        """Check required fields.

        Raises:
            AuthError: If user_id is empty
            ValidationError: If the message is empty or a file is malformed
        """
        if not self.user_id or not str(self.user_id).strip():
            raise AuthError("User not authenticated")
        if not isinstance(self.message, str) or not self.message.strip():
            raise ValidationError("message is required and cannot be empty")
        if not isinstance(self.feature_type, FeatureType):
            raise ValidationError(f"feature_type must be a FeatureType, got {self.feature_type!r}")
        for attachment in self.files:
            if not attachment.mime_type or not attachment.base64:
                raise ValidationError("file attachments require mime_type and base64 payload")


@dataclass(frozen=True)
class Citation:
    number: int
    url: str
    title: str = ""
    relevance: float = 0.9


@dataclass(frozen=True)
class AIResponse:
    """Normalized result returned to callers."""
    content: str
    model_used: str
    tokens_used: int
    cost_cents: int
    confidence: float
    sources: Optional[List[Citation]] = None
    cache_hit: bool = False
    processing_time_ms: float = 0.0
    data: Optional[Any] = None  # Parsed payload for structured features

    def as_cache_hit(self) -> "AIResponse":
        """Copy served from cache: no cost, flagged as a hit."""
        return replace(self, cache_hit=True, cost_cents=0, processing_time_ms=0.0)


def _mapping(value: Any, name: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationError(f"{name} must be an object, got {type(value).__name__}")
    return value


def _items(container: Dict[str, Any], camel: str, snake: str) -> List[Dict[str, Any]]:
    """List of objects under either key spelling."""
    raw = container.get(camel, container.get(snake)) or []
    if not isinstance(raw, list):
        raise ValidationError(f"{camel} must be a list")
    return [_mapping(item, f"{camel} entry") for item in raw]


def _profile_context(raw: Any) -> Optional[ProfileContext]:
    if raw is None:
        return None
    raw = _mapping(raw, "userProfile")
    return ProfileContext(
        personality_mode=raw.get("personalityMode", raw.get("personality_mode")),
        display_name=raw.get("displayName", raw.get("display_name")),
    )


def _timestamp(raw: Any) -> Optional[datetime]:
    if raw is None or isinstance(raw, datetime):
        return raw
    if not isinstance(raw, str):
        raise ValidationError("currentTime must be an ISO-8601 string")
    # fromisoformat only accepts a trailing Z from Python 3.11
    text = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"currentTime is not an ISO-8601 timestamp: {raw!r}")
