from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class UploadError(BaseModel):
    row: int
    error: str
    reason: str


class UploadSummary(BaseModel):
    success: bool
    message: str
    created: int
    errors: List[UploadError] = []
    totalProcessed: int


class CAScore(BaseModel):
    year1: str = "-"
    year2: str = "-"
    year3: str = "-"


class ReligiousInfo(BaseModel):
    type: str = ""


class RegistrationPayload(BaseModel):
    studentNumber: str = Field(..., min_length=1)
    lastname: str = ""
    othername: str = ""
    firstname: str = ""
    dateOfBirth: Optional[str] = None
    gender: str = ""
    schoolType: str = ""
    passport: Optional[str] = None
    # Keyed by subject code, e.g. {"ENG": {"year1": "67", ...}}
    caScores: Dict[str, CAScore] = Field(default_factory=dict)
    studentSubjects: List[str] = Field(default_factory=list)
    religious: Optional[ReligiousInfo] = None
    isLateRegistration: bool = False
    year: Optional[str] = None
    prcd: Optional[int] = None


class RegistrationSubmission(BaseModel):
    registrations: List[RegistrationPayload]
    override: bool = False


class RegistrationSubmissionResult(BaseModel):
    message: str
    count: int


class TableCount(BaseModel):
    table: str
    count: int


class ExportCounts(BaseModel):
    totalCount: int
    tables: List[TableCount]


class ExportChunk(BaseModel):
    rows: List[List[str]]
    nextCursor: Optional[str] = None
    chunkSize: int
    hasMore: bool


class HealthStatus(BaseModel):
    status: str
    details: Dict[str, Any] = Field(default_factory=dict)
