from pydantic import BaseModel, Field

class LoginRequest(BaseModel):
    email: str
    password: str

class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"

class RefreshRequest(BaseModel):
    refresh_token: str

class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=16)
    newPassword: str = Field(min_length=8, max_length=128)
