"""
Identify router - resolves an observed email/phone pair to a person.
"""

from fastapi import APIRouter, Depends, status

from app.schemas.identity import IdentifyRequest, IdentifyResponse
from app.services.identity_service import IdentityService, get_identity_service

router = APIRouter(tags=["identity"])


@router.post(
    "/identify",
    response_model=IdentifyResponse,
    status_code=status.HTTP_200_OK,
    responses={
        400: {"description": "Missing email/phoneNumber, or a new contact needs both"},
        404: {"description": "No identity could be determined"},
        503: {"description": "Contact store failure"},
    },
)
async def identify(
    data: IdentifyRequest,
    service: IdentityService = Depends(get_identity_service),
):
    """
    Resolve an (email, phoneNumber) observation.

    Creates, links or merges contacts as needed and returns the consolidated
    identity: the primary contact id, every known email and phone number
    (primary's first) and the ids of all secondary contacts.
    """
    contact = await service.identify(data.email, data.phone_number)
    return IdentifyResponse(contact=contact)
