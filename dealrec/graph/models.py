"""Node, edge and interaction types for the deal graph."""

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type

import numpy as np


class NodeType(str, Enum):
    """Kinds of node stored in the deal graph."""
    DEAL = "deal"
    MERCHANT = "merchant"
    CATEGORY = "category"
    USER = "user"
    INTEREST = "interest"


class EdgeType(str, Enum):
    """Kinds of edge stored in the deal graph."""
    OFFERED_BY = "offered_by"
    BELONGS_TO = "belongs_to"
    INTERESTED_IN = "interested_in"
    SIMILAR = "similar"


class InteractionKind(str, Enum):
    """User actions recorded against a deal."""
    VIEW = "view"
    CLICK = "click"
    ACTIVATE = "activate"


@dataclass
class NodeAttributes:
    """Base class for per-type node attributes.

    Schema fields are dataclass fields; anything else lands in ``extra``.
    Keys coming from catalog payloads may use camelCase and are mapped
    through ``ALIASES``.
    """

    extra: Dict[str, Any] = field(default_factory=dict)

    ALIASES = {}

    def _field_name(self, name: str) -> Optional[str]:
        name = self.ALIASES.get(name, name)
        schema = {f.name for f in fields(self)} - {"extra"}
        return name if name in schema else None

    def set(self, name: str, value: Any):
        field_name = self._field_name(name)
        if field_name is None:
            self.extra[name] = value
        else:
            setattr(self, field_name, value)

    def get(self, name: str, default: Any = None) -> Any:
        field_name = self._field_name(name)
        if field_name is None:
            return self.extra.get(name, default)
        return getattr(self, field_name)

    @classmethod
    def from_mapping(cls, attrs: Optional[Mapping[str, Any]]) -> "NodeAttributes":
        instance = cls()
        for name, value in (attrs or {}).items():
            instance.set(name, value)
        return instance


@dataclass
class DealAttributes(NodeAttributes):
    merchant_name: Optional[str] = None
    expiration_date: Optional[str] = None
    vector: Optional[np.ndarray] = None

    ALIASES = {
        "merchantName": "merchant_name",
        "expirationDate": "expiration_date",
    }


@dataclass
class MerchantAttributes(NodeAttributes):
    name: Optional[str] = None
    description: Optional[str] = None
    product_range: Optional[str] = None

    ALIASES = {"productRange": "product_range"}


@dataclass
class CategoryAttributes(NodeAttributes):
    name: Optional[str] = None


@dataclass
class UserAttributes(NodeAttributes):
    interests: List[str] = field(default_factory=list)
    shopping_frequency: Optional[str] = None

    ALIASES = {"shoppingFrequency": "shopping_frequency"}


@dataclass
class InterestAttributes(NodeAttributes):
    name: Optional[str] = None


ATTRIBUTE_TYPES: Dict[NodeType, Type[NodeAttributes]] = {
    NodeType.DEAL: DealAttributes,
    NodeType.MERCHANT: MerchantAttributes,
    NodeType.CATEGORY: CategoryAttributes,
    NodeType.USER: UserAttributes,
    NodeType.INTEREST: InterestAttributes,
}


@dataclass
class GraphNode:
    key: str
    node_type: NodeType
    attrs: NodeAttributes


@dataclass
class GraphEdge:
    """Typed edge with additive numeric attributes."""

    source: str
    target: str
    edge_type: EdgeType
    weight: float = 0.0
    view: int = 0
    click: int = 0
    activate: int = 0
    timestamp: Optional[datetime] = None
    extra: Dict[str, float] = field(default_factory=dict)

    COUNTERS = ("weight", "view", "click", "activate")

    def merge(self, attrs: Mapping[str, Any]):
        """Add numeric attributes to the current values.

        ``timestamp`` keeps the most recent value instead of being summed.
        """
        for name, value in attrs.items():
            if name == "timestamp":
                if value is not None and (self.timestamp is None or value > self.timestamp):
                    self.timestamp = value
            elif name in self.COUNTERS:
                setattr(self, name, getattr(self, name) + value)
            else:
                self.extra[name] = self.extra.get(name, 0) + value

    def count(self, kind: InteractionKind) -> int:
        return getattr(self, InteractionKind(kind).value)


@dataclass
class InteractionRecord:
    """A single user action on a deal."""

    user_id: str
    deal_id: str
    kind: InteractionKind
    timestamp: datetime
    interaction_id: Optional[str] = None

    def __post_init__(self):
        self.kind = InteractionKind(self.kind)
        timestamp = parse_datetime(self.timestamp)
        if timestamp is None:
            raise ValueError(f"Invalid interaction timestamp: {self.timestamp!r}")
        self.timestamp = timestamp
        if self.interaction_id is None:
            millis = int(self.timestamp.timestamp() * 1000)
            self.interaction_id = f"{self.user_id}-{self.deal_id}-{millis}"

    def to_row(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "dealId": self.deal_id,
            "type": self.kind.value,
            "timestamp": int(self.timestamp.timestamp() * 1000),
        }

    @classmethod
    def from_row(cls, interaction_id: str, row: Mapping[str, Any]) -> "InteractionRecord":
        return cls(
            user_id=str(row["userId"]),
            deal_id=str(row["dealId"]),
            kind=InteractionKind(row["type"]),
            timestamp=datetime.fromtimestamp(row["timestamp"] / 1000),
            interaction_id=interaction_id,
        )


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an expiration or interaction time into a naive local datetime.

    Accepts datetimes, dates, ISO-8601 strings (``Z`` suffix allowed) and
    epoch milliseconds. Returns ``None`` for anything unparsable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value / 1000)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def merchant_key(name: str) -> str:
    return f"merchant:{name.strip()}"


def category_key(name: str) -> str:
    return f"category:{name.strip().lower()}"


def interest_key(name: str) -> str:
    return f"interest:{name.strip().lower()}"
