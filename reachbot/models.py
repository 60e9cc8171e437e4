import time
import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


def new_id() -> str:
    return uuid.uuid4().hex


DEFAULT_PROFILE = "Newly created user."


class UserType(str, Enum):
    NEW = "new"
    IDOL = "idol"
    CANDIDATE = "candidate"
    FREELANCER = "freelancer"
    CLIENT = "client"
    HR = "hr"
    ROF = "rof"
    ROC = "roc"


# Roles that mean "currently negotiating a reach-out"
ENGAGED_TYPES = frozenset({UserType.ROF, UserType.ROC})
# Roles allowed to author queries
AUTHOR_TYPES = frozenset({UserType.HR, UserType.CLIENT})
# Roles a session may hand a user over to
ASSIGNABLE_TYPES = frozenset({
    UserType.IDOL, UserType.CANDIDATE, UserType.FREELANCER, UserType.CLIENT, UserType.HR,
})


class QueryStatus(str, Enum):
    INIT = "init"
    HOLD = "hold"
    SUCCESS = "success"
    FAIL = "fail"


TERMINAL_QUERY_STATUSES = frozenset({QueryStatus.SUCCESS, QueryStatus.FAIL})


class ReachOutType(str, Enum):
    ASK = "ask"
    NOTIFY = "notify"


class ReachOutStatus(str, Enum):
    HOLD = "hold"
    INIT = "init"
    QUALIFY = "qualify"
    FAIL = "fail"


TERMINAL_REACH_OUT_STATUSES = frozenset({ReachOutStatus.QUALIFY, ReachOutStatus.FAIL})


class User(BaseModel):
    id: str = Field(default_factory=new_id)
    jid: str
    phone: str = ""
    name: str = ""
    type: UserType = UserType.NEW
    current_reach_out: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    profile: str = DEFAULT_PROFILE
    created_at: float = Field(default_factory=time.time)

    @model_validator(mode="after")
    def _engaged_iff_reach_out(self):
        engaged = self.type in ENGAGED_TYPES
        if engaged != (self.current_reach_out is not None):
            raise ValueError(
                f"user {self.jid}: type={self.type.value} with current_reach_out={self.current_reach_out}"
            )
        return self

    @property
    def engaged(self) -> bool:
        return self.type in ENGAGED_TYPES


class Query(BaseModel):
    id: str = Field(default_factory=new_id)
    author_id: str
    author_type: UserType
    text: str
    status: QueryStatus = QueryStatus.INIT
    reported: bool = False
    created_at: float = Field(default_factory=time.time)

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_QUERY_STATUSES


class ReachOut(BaseModel):
    id: str = Field(default_factory=new_id)
    target_id: str
    query_id: str
    type: ReachOutType
    status: ReachOutStatus = ReachOutStatus.HOLD
    user_info: str = ""
    end: bool = False
    created_at: float = Field(default_factory=time.time)
    # Populated on reads that resolve the owning query
    query: Optional[Query] = Field(default=None, exclude=True)


class MessageAuthor(str, Enum):
    USER = "user"
    MODEL = "model"


class Message(BaseModel):
    jid: str
    by: MessageAuthor
    type: UserType
    content: str
    has_media: bool = False
    media_type: Optional[str] = None
    timestamp: float = Field(default_factory=time.time)


class HistoryEntry(BaseModel):
    role: MessageAuthor
    text: str


class Candidate(BaseModel):
    """One entry of a candidate list handed to the reach-out fan-out."""
    name: str = ""
    phone: str = ""
    metadata: Any = None
