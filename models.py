import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

DRAW = "draw"


class RoomStatus(str, Enum):
    WAITING = "waiting"
    PLAYING = "playing"
    FINISHED = "finished"


class _Deleted:
    """Sentinel delivered once a room no longer exists."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "DELETED"

    def __bool__(self):
        return False


DELETED = _Deleted()


class SessionContext(BaseModel):
    """Authenticated caller, passed explicitly into every coordinator call."""
    model_config = ConfigDict(frozen=True)

    identity: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.identity)


class Room(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    game_slug: str = Field(alias="gameSlug")
    players: List[str]
    player_names: List[str] = Field(default_factory=list, alias="playerNames")
    current_turn: Optional[str] = Field(default=None, alias="currentTurn")
    game_state: Dict[str, Any] = Field(default_factory=dict, alias="gameState")
    status: RoomStatus = RoomStatus.WAITING
    winner: Optional[str] = None
    created_by: str = Field(alias="createdBy")
    created_at: int = Field(alias="createdAt")
    updated_at: int = Field(alias="updatedAt")

    def has_player(self, identity: str) -> bool:
        return identity in self.players

    def to_wire(self) -> Dict[str, Any]:
        """Camel-cased dict, the shape clients and the game payload see."""
        return self.model_dump(by_alias=True, mode="json")

    def to_redis(self) -> Dict[str, str]:
        # Hash values are strings; structured values are JSON, None is omitted
        data = {}
        for k, v in self.to_wire().items():
            if v is None:
                continue
            if isinstance(v, (dict, list, int)):
                data[k] = json.dumps(v)
            else:
                data[k] = str(v)
        return data

    @classmethod
    def from_redis(cls, raw: Dict[str, str]) -> "Room":
        data = {}
        for k, v in raw.items():
            if k in ("players", "playerNames", "gameState", "createdAt", "updatedAt"):
                data[k] = json.loads(v)
            else:
                data[k] = v
        return cls.model_validate(data)
