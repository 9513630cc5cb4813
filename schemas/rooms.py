from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Optional


def stringify_scalar(value):
    # Ids and names may arrive as JSON numbers; other types are left for validation to reject
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class JoinRequest(BaseModel):
    room: Optional[str] = None
    name: Optional[str] = None

    @field_validator("room", "name", mode="before")
    @classmethod
    def coerce_scalars(cls, value):
        return stringify_scalar(value)


class Peer(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(alias="clientId")
    name: str


class JoinResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(alias="clientId")
    room: str
    peers: list[Peer]


class SignalRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room: Optional[str] = None
    from_: Optional[str] = Field(None, alias="from")
    target: Optional[str] = None
    # Opaque negotiation payload, relayed untouched
    data: Any = None

    @field_validator("room", "from_", "target", mode="before")
    @classmethod
    def coerce_scalars(cls, value):
        return stringify_scalar(value)


class LeaveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room: Optional[str] = None
    client_id: Optional[str] = Field(None, alias="clientId")

    @field_validator("room", "client_id", mode="before")
    @classmethod
    def coerce_scalars(cls, value):
        return stringify_scalar(value)


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
    rooms: int
    sessions: int
