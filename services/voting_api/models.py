"""Pydantic models for request/response validation."""
from datetime import datetime
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, validator


class FingerprintFields(BaseModel):
    """Device signals the client sends; the network comes from the connection."""

    device_id: Optional[str] = Field(default=None, description="Client generated device identifier")
    browser_signature: Optional[str] = Field(default=None, description="Browser fingerprint")


class SignInRequest(FingerprintFields):
    """Sign-in request model."""

    institutional_email: str = Field(..., description="Enrollment email, e.g. 2203sen001@alhikmah.edu.ng")
    personal_email: str = Field(..., description="Personal email address")
    matric_number: str = Field(..., description="Matric number, e.g. 22/03sen001")
    full_name: str = Field(..., description="First and last name")

    @validator("institutional_email", "personal_email", "matric_number")
    def strip_and_lower(cls, v):
        """Credentials are compared case-insensitively."""
        return v.strip().lower()

    class Config:
        json_schema_extra = {
            "example": {
                "institutional_email": "2203sen001@alhikmah.edu.ng",
                "personal_email": "ada.okoro@gmail.com",
                "matric_number": "22/03sen001",
                "full_name": "Ada Okoro",
                "device_id": "3f1c9a7e-8b2d-4c55-9e0f-7a6b1d2c3e4f",
            }
        }


class SignInResponse(BaseModel):
    """Sign-in response model."""

    message: str = Field(default="Sign-in successful")
    institutional_email: str
    session_token: str
    expires_at: datetime
    remaining_positions: List[str]
    continue_voting: bool = Field(..., description="True when resuming an earlier ballot set")


class SessionRequest(FingerprintFields):
    """Fields every authenticated request carries."""

    session_token: str = Field(..., description="Token returned by sign-in")
    institutional_email: str = Field(..., description="Enrollment email the session belongs to")


class VoteRequest(SessionRequest):
    """Vote submission request model."""

    candidate_id: str = Field(..., description="Chosen candidate")
    position: str = Field(..., description="Position the vote is for")

    @validator("candidate_id", "position")
    def validate_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("Field cannot be empty")
        return v.strip()

    class Config:
        json_schema_extra = {
            "example": {
                "session_token": "q2Vd0...",
                "institutional_email": "2203sen001@alhikmah.edu.ng",
                "candidate_id": "candidate111",
                "position": "President",
                "device_id": "3f1c9a7e-8b2d-4c55-9e0f-7a6b1d2c3e4f",
            }
        }


class VoteResponse(BaseModel):
    """Vote submission response model."""

    message: str = Field(default="Vote submitted successfully")
    position: str


class CompleteVotingRequest(SessionRequest):
    """Completion request model."""


class CompleteVotingResponse(BaseModel):
    """Completion response model."""

    message: str = Field(default="Voting completed successfully! Thank you for voting.")
    completed: bool = True


class CandidateInfo(BaseModel):
    """Candidate information model."""

    id: str
    name: str
    position: str


class CandidateResult(BaseModel):
    candidate_id: str
    name: str
    votes: int


class TallyResponse(BaseModel):
    """Public results response model."""

    vote_counts: Dict[str, List[CandidateResult]] = Field(..., description="Candidates per position, most votes first")
    total_valid_votes: int
    last_updated: datetime

    class Config:
        json_schema_extra = {
            "example": {
                "vote_counts": {
                    "President": [
                        {"candidate_id": "candidate111", "name": "Alowonle Olayinka Abdulrazzak", "votes": 12},
                        {"candidate_id": "candidate112", "name": "Fadlullah Folajomi Babalola", "votes": 7},
                    ]
                },
                "total_valid_votes": 19,
                "last_updated": "2025-03-01T10:30:00Z"
            }
        }


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Overall health status")
    services: dict = Field(..., description="Status of individual services")
    timestamp: datetime = Field(..., description="Health check timestamp")


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: dict = Field(default_factory=dict, description="Additional error details")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "already_voted",
                "message": "You have already voted for President",
                "details": {"position": "President"}
            }
        }
