from decimal import Decimal
from enum import Enum

from sqlmodel import Field, SQLModel


class Modality(str, Enum):
    ONLINE = "ONLINE"
    IN_PERSON = "IN_PERSON"
    PHONE = "PHONE"


class SessionType(SQLModel, table=True):
    __tablename__ = "session_types"
    id: int | None = Field(default=None, primary_key=True)
    name: str
    description: str | None = None
    duration_minutes: int = Field(gt=0)
    modality: Modality = Modality.ONLINE
    price: Decimal = Field(max_digits=10, decimal_places=2)
    is_active: bool = True


class SessionTypePublic(SQLModel):
    id: int
    name: str
    description: str | None = None
    duration_minutes: int
    modality: Modality
    price: Decimal
