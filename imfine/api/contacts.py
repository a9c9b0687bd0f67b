"""
Contact API Routes: the owner's trusted contacts and the invited side of
the linking protocol.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse

from ..core.dependencies import CurrentSubjectDep
from ..core.errors import (
    AllChannelsFailedError,
    CapacityError,
    DispatchError,
    IdentityMismatchError,
    InvalidOperationError,
    InviteCooldownError,
    NotFoundError,
)
from ..schemas import (
    AllChannelsFailedResponse,
    ChannelFailure,
    ContactResponse,
    CreateContactRequest,
    DeliveryEntryResponse,
    InviteResponse,
    TrustedLinkResponse,
    TrustedLinksResponse,
    UpdateContactRequest,
)
from .dependencies import ContactDirectoryDep, LinkingProtocolDep

router = APIRouter(prefix="/contacts", tags=["contacts"])


def all_channels_failed_response(exc: AllChannelsFailedError) -> JSONResponse:
    body = AllChannelsFailedResponse(
        message=str(exc),
        attempts=[ChannelFailure(**a) for a in exc.attempts],
    )
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=body.model_dump())


# =============================================================================
# OWNER ENDPOINTS
# =============================================================================


@router.get("", response_model=list[ContactResponse])
async def list_contacts(current: CurrentSubjectDep, directory: ContactDirectoryDep):
    """List the caller's trusted contacts."""
    contacts = await directory.list_contacts(current.id)
    return [ContactResponse.model_validate(c) for c in contacts]


@router.get("/trusted-links", response_model=TrustedLinksResponse)
async def trusted_links(current: CurrentSubjectDep, protocol: LinkingProtocolDep):
    """Pending invites addressed to the caller and the subjects it protects."""
    links = await protocol.get_trusted_links(current.subject, current.identity)
    return TrustedLinksResponse(
        pending=[TrustedLinkResponse.model_validate(link) for link in links.pending],
        active=[TrustedLinkResponse.model_validate(link) for link in links.active],
    )


@router.post("", response_model=ContactResponse, status_code=status.HTTP_201_CREATED)
async def add_contact(
    request: CreateContactRequest,
    current: CurrentSubjectDep,
    directory: ContactDirectoryDep,
):
    """Add a trusted contact. It must be invited before it receives alerts."""
    try:
        contact = await directory.add_contact(
            current.id, request.name, request.channel, request.destination,
        )
    except CapacityError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InvalidOperationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return ContactResponse.model_validate(contact)


@router.patch("/{contact_id}", response_model=ContactResponse)
async def update_contact(
    contact_id: UUID,
    request: UpdateContactRequest,
    current: CurrentSubjectDep,
    directory: ContactDirectoryDep,
):
    """Edit a contact. A new destination clears any confirmation."""
    try:
        contact = await directory.update_contact(
            current.id,
            contact_id,
            name=request.name,
            channel=request.channel,
            destination=request.destination,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except CapacityError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InvalidOperationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return ContactResponse.model_validate(contact)


@router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contact(
    contact_id: UUID,
    current: CurrentSubjectDep,
    directory: ContactDirectoryDep,
):
    try:
        await directory.delete_contact(current.id, contact_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/{contact_id}/invite", response_model=InviteResponse)
async def invite_contact(
    contact_id: UUID,
    current: CurrentSubjectDep,
    protocol: LinkingProtocolDep,
):
    """
    Send a trusted-contact request.

    Returns 502 with per-channel detail when every channel failed, so the
    client can suggest another channel.
    """
    try:
        result = await protocol.invite(current.id, contact_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (InvalidOperationError, InviteCooldownError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except AllChannelsFailedError as e:
        return all_channels_failed_response(e)
    except DispatchError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return InviteResponse(
        contact=ContactResponse.model_validate(result.contact),
        sent=result.sent,
        delivery=DeliveryEntryResponse.model_validate(result.delivery),
    )


# =============================================================================
# INVITED-SIDE ENDPOINTS
# =============================================================================


@router.post("/{contact_id}/confirm", response_model=ContactResponse)
async def confirm_contact(
    contact_id: UUID,
    current: CurrentSubjectDep,
    protocol: LinkingProtocolDep,
):
    """Accept an invite addressed to the caller."""
    try:
        contact = await protocol.confirm(current.subject, current.identity, contact_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except IdentityMismatchError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except InvalidOperationError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return ContactResponse.model_validate(contact)


@router.post("/{contact_id}/decline", status_code=status.HTTP_204_NO_CONTENT)
async def decline_contact(
    contact_id: UUID,
    current: CurrentSubjectDep,
    protocol: LinkingProtocolDep,
):
    try:
        await protocol.decline(current.subject, current.identity, contact_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except IdentityMismatchError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))


@router.post("/{contact_id}/unlink", status_code=status.HTTP_204_NO_CONTENT)
async def unlink_contact(
    contact_id: UUID,
    current: CurrentSubjectDep,
    protocol: LinkingProtocolDep,
):
    """Stop protecting the contact's owner."""
    try:
        await protocol.unlink(current.subject, current.identity, contact_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except IdentityMismatchError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
