from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


# Redemption DTOs
class RedeemRequest(BaseModel):
    # Any JSON value; the validator decides what counts as a code.
    code: Optional[Any] = None


class RedeemResponse(BaseModel):
    success: bool = True
    plan: Optional[str] = None
    requiresSignIn: Optional[bool] = None
    alreadyApplied: Optional[bool] = None


class UpgradeRequest(BaseModel):
    # A client flag is only a trigger to re-run validated grant logic.
    has_pro_code: bool = Field(False, alias="hasProCode")
    code: Optional[Any] = None

    model_config = ConfigDict(populate_by_name=True)


class UpgradeResponse(BaseModel):
    success: bool = True
    plan: str


class EntitlementsOut(BaseModel):
    plan: str
    pro: bool
    grants: List[str]


# Session DTOs
class SessionOut(BaseModel):
    subject: int
    email: str
    plan: str
    issuedAt: str


class SessionUpdate(BaseModel):
    plan: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class RequestLinkPayload(BaseModel):
    email: EmailStr
