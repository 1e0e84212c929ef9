"""
FastAPI router module for contacts.

Key Endpoints:
- GET    /contacts                     - List contacts (newest first)
- POST   /contacts                     - Create a contact
- PATCH  /contacts/{contact_id}        - Partial update
- DELETE /contacts/{contact_id}        - Delete a contact
- GET    /contacts/{contact_id}/score  - Score from the contact's linked deals
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, status

from pulse_backend.api.deals import not_found
from pulse_backend.core.dependencies import StoreDep
from pulse_backend.models.schemas import Contact, ContactCreate, ContactUpdate, ScoringResult
from pulse_backend.services.normalizers import utc_now
from pulse_backend.services.scoring import calculate_contact_score
from pulse_backend.services.store import EntityNotFoundError


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=List[Contact])
async def list_contacts(store: StoreDep) -> List[Contact]:
    try:
        return await store.get_contacts()
    except Exception as e:
        logger.error(f"Error listing contacts: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to list contacts: {str(e)}")


@router.post("", response_model=Contact, status_code=status.HTTP_201_CREATED)
async def create_contact(payload: ContactCreate, store: StoreDep) -> Contact:
    try:
        contact = await store.add_contact(payload)
        logger.info(f"Created contact {contact.id}: {contact.name}")
        return contact
    except Exception as e:
        logger.error(f"Error creating contact: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create contact: {str(e)}")


@router.patch("/{contact_id}", response_model=Contact)
async def update_contact(contact_id: str, patch: ContactUpdate, store: StoreDep) -> Contact:
    try:
        return await store.update_contact(contact_id, patch)
    except EntityNotFoundError as e:
        raise not_found(e)
    except Exception as e:
        logger.error(f"Error updating contact {contact_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to update contact: {str(e)}")


@router.delete("/{contact_id}")
async def delete_contact(contact_id: str, store: StoreDep) -> Dict[str, Any]:
    try:
        await store.delete_contact(contact_id)
        logger.info(f"Deleted contact {contact_id}")
        return {'success': True, 'id': contact_id}
    except EntityNotFoundError as e:
        raise not_found(e)
    except Exception as e:
        logger.error(f"Error deleting contact {contact_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to delete contact: {str(e)}")


@router.get("/{contact_id}/score", response_model=ScoringResult)
async def get_contact_score(contact_id: str, store: StoreDep) -> ScoringResult:
    """
    Score a contact from the deals linked to it through contact_id.

    A contact without deals is scored on activity alone.
    """
    try:
        contact = await store.get_contact(contact_id)
        deals = [deal for deal in await store.get_deals() if deal.contact_id == contact.id]
        return calculate_contact_score(contact, deals, utc_now())
    except EntityNotFoundError as e:
        raise not_found(e)
    except Exception as e:
        logger.error(f"Error scoring contact {contact_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to score contact: {str(e)}")
