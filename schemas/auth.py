from pydantic import BaseModel, EmailStr, Field

class PinLogin(BaseModel):
    email: EmailStr
    pin: str = Field(min_length=4, max_length=12)

class SessionToken(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
