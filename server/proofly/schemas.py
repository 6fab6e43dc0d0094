from pydantic import BaseModel, Field
from typing import List, Optional, Literal, Dict, Any


class LoginIn(BaseModel):
    username: str
    password: str


class CreateJob(BaseModel):
    clientName: str = ""
    clientPhone: str = ""
    clientEmail: Optional[str] = None
    serviceType: str = ""
    address: str = ""
    notes: Optional[str] = None


class PhotoIn(BaseModel):
    uri: str                  # blob reference from the capture layer
    type: Literal["before", "during", "after"] = "during"


class SignatureIn(BaseModel):
    signature: str            # blob reference / data URI
    clientSignedName: Optional[str] = None


class PhotoOut(BaseModel):
    id: str
    uri: str
    type: str
    timestamp: str


class JobOut(BaseModel):
    id: str
    userId: str
    status: str
    statusText: str
    clientName: str
    clientPhone: str
    clientEmail: Optional[str] = None
    serviceType: str
    address: str
    notes: Optional[str] = None
    photos: List[PhotoOut] = Field(default_factory=list)
    signature: Optional[str] = None
    clientSignedName: Optional[str] = None
    remoteSigningData: Optional[Dict[str, Any]] = None
    createdAt: str
    completedAt: Optional[str] = None


class CreateRemoteSigning(BaseModel):
    contactMethod: Literal["email", "sms"]
    address: str


class RemoteSigningOut(BaseModel):
    success: bool
    reviewUrl: Optional[str] = None
    requestId: Optional[str] = None


class SigningRequestOut(BaseModel):
    id: str
    jobId: str
    contactMethod: str
    clientEmail: Optional[str] = None
    clientPhone: Optional[str] = None
    status: str
    expiresAt: str
    createdAt: str
    reviewedAt: Optional[str] = None
    clientFeedback: Optional[str] = None
    clientSignedName: Optional[str] = None


class ReviewDecision(BaseModel):
    clientFeedback: Optional[str] = None
    signatureData: Optional[str] = None
    clientSignedName: Optional[str] = None


class UsageCheck(BaseModel):
    action: str
    jobCount: Optional[int] = None
    photosInJob: Optional[int] = None
