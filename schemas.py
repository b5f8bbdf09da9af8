from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional

# Each stored model corresponds to a Mongo collection named by class name lowercased

class Course(BaseModel):
    courseName: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    videoPreview: str = Field(..., description="Public URL of the preview video")
    fullVideo: str = Field(..., description="Public URL of the full video")

class CoursePublic(Course):
    id: str
    created_at: Optional[str] = None

class PublishResponse(BaseModel):
    message: str
    course: CoursePublic

class User(BaseModel):
    username: str = Field(..., min_length=1)
    email: EmailStr
    # Stored as given; see credentials.PlaintextCredentialVerifier
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.strip().lower()

class UserCreate(BaseModel):
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None

class UserLogin(BaseModel):
    email: str = ""
    password: str = ""

class Admin(BaseModel):
    username: str = Field(..., min_length=1)
    password_hash: str
    token: Optional[str] = None

    @field_validator("username")
    @classmethod
    def trim_username(cls, v: str) -> str:
        return v.strip()

class AdminLogin(BaseModel):
    username: str = ""
    password: str = ""

class Token(BaseModel):
    token: str

class TokenClaims(BaseModel):
    sub: str
    username: Optional[str] = None
    iat: int
    exp: int
