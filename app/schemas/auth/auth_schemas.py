from pydantic import BaseModel, EmailStr
from typing import List, Literal, Optional


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"


class LoginUserOut(BaseModel):
    id: int
    username: str
    full_name: Optional[str] = None
    roles: List[str]


class LoginOut(BaseModel):
    auth: TokenOut
    user: LoginUserOut
