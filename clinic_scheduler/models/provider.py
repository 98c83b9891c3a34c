from sqlmodel import Field, SQLModel


class ProviderBase(SQLModel):
    email: str = Field(unique=True, index=True)
    full_name: str
    specialization: str | None = None
    bio: str | None = None
    is_active: bool = True


class Provider(ProviderBase, table=True):
    __tablename__ = "providers"
    id: int | None = Field(default=None, primary_key=True)
    hashed_password: str | None = None


class ProviderCreate(SQLModel):
    email: str
    password: str
    full_name: str
    specialization: str | None = None
    bio: str | None = None


class ProviderPublic(SQLModel):
    id: int
    email: str
    full_name: str
    specialization: str | None = None
    bio: str | None = None


class ProviderUpdate(SQLModel):
    """Profile fields a provider may change; missing or null fields are left alone."""

    full_name: str | None = Field(default=None, min_length=1, max_length=200)
    specialization: str | None = None
    bio: str | None = None
