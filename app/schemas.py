from pydantic import BaseModel, Field


# --- Auth ---

class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


# --- User ---

class UserUpdate(BaseModel):
    """Partial self-update; missing or empty fields leave the stored value alone."""
    username: str | None = Field(None, max_length=100)
    email: str | None = Field(None, max_length=255)
    password: str | None = None
    fullname: str | None = Field(None, max_length=150)
    description: str | None = None


# --- Post ---

class PostCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    description: str
    content: str
    category: str = Field(min_length=1, max_length=100)


class PostUpdate(BaseModel):
    description: str
    content: str
    # accepted for form compatibility, never written
    title: str | None = None
    category: str | None = None
