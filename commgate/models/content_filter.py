"""Content filter rules applied to outbound message text."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from commgate.core.timeutil import utcnow


class PatternType(str, Enum):
    REGEX = "regex"
    LITERAL = "literal"


class FilterAction(str, Enum):
    DENY = "deny"
    FLAG = "flag"


class ContentFilter(SQLModel, table=True):
    __tablename__ = "gateway_content_filters"

    id: Optional[int] = Field(default=None, primary_key=True)
    pattern: str = Field(max_length=1024)
    pattern_type: str = Field(default=PatternType.REGEX.value, max_length=16)
    action: str = Field(default=FilterAction.DENY.value, max_length=16)
    description: Optional[str] = Field(default=None, nullable=True, max_length=255)
    enabled: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        return self.description or f"filter-{self.id}"
