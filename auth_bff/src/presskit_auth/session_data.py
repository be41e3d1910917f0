# src/presskit_auth/session_data.py

from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Any, Optional


class SessionUser(BaseModel):
    """
    Verified claims of the access token carried by the session cookies.
    Tokens themselves stay in the cookies; only these claims are handed out.
    """
    model_config = ConfigDict(extra="ignore")

    sub: str
    email: Optional[str] = None
    role: Optional[str] = None
    aud: Optional[Any] = None
    exp: Optional[int] = None
    session_id: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def display_name(self) -> Optional[str]:
        return self.user_metadata.get("display_name")


class LoginRequest(BaseModel):
    email: str
    password: str


class SignupRequest(LoginRequest):
    display_name: str
