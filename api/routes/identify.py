"""
Identify API route.

POST /identify links an email and/or phone number into the contact graph
and returns the consolidated identity it belongs to.
"""
import asyncio
import logging
from typing import Optional, Union

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from api.services.contact import ConsolidatedIdentity
from api.services.errors import RepositoryError, ValidationError
from api.services.identity_resolver import get_identity_resolver

logger = logging.getLogger(__name__)

router = APIRouter(tags=["identity"])


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class IdentifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = Field(default=None, description="Email address")
    phone_number: Optional[Union[str, int]] = Field(
        default=None,
        alias="phoneNumber",
        description="Phone number (string or number)",
    )


class IdentifyResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    primary_contact_id: int = Field(..., alias="primaryContactId")
    emails: list[str]
    phone_numbers: list[str] = Field(..., alias="phoneNumbers")
    secondary_contact_ids: list[int] = Field(..., alias="secondaryContactIds")

    @classmethod
    def from_identity(cls, identity: ConsolidatedIdentity) -> "IdentifyResponse":
        return cls(
            primary_contact_id=identity.primary_contact_id,
            emails=identity.emails,
            phone_numbers=identity.phone_numbers,
            secondary_contact_ids=identity.secondary_contact_ids,
        )


class ErrorResponse(BaseModel):
    error: str


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post(
    "/identify",
    response_model=IdentifyResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def identify(request: IdentifyRequest):
    """Resolve an email / phone number pair to its consolidated identity."""
    resolver = get_identity_resolver()
    try:
        identity = await asyncio.to_thread(
            resolver.resolve, request.email, request.phone_number
        )
    except ValidationError:
        return JSONResponse(
            status_code=400,
            content={"error": "Email or phoneNumber is required"},
        )
    except RepositoryError as e:
        logger.exception(f"Error in /identify: {e}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
    except Exception:
        logger.exception("Unexpected error in /identify")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return IdentifyResponse.from_identity(identity)
