from pydantic import BaseModel, Field
from typing import Optional

from constants import INVITE_TTL_SECONDS


class CreateRoomRequest(BaseModel):
    game_slug: str = Field(min_length=1)

class CreateRoomResponse(BaseModel):
    room_id: str
    invite_url: str
    ws_url: str

class JoinByLinkRequest(BaseModel):
    link: str

class OutcomeRequest(BaseModel):
    winner: str

class InviteRequest(BaseModel):
    valid_for_secs: Optional[int] = Field(default=INVITE_TTL_SECONDS, gt=0)

class InviteResponse(BaseModel):
    invite_url: str

class LeaveRoomResponse(BaseModel):
    message: str
