"""
Contact form relay.
"""
import logging
import re

from fastapi import APIRouter, Depends, HTTPException, status

from sukusuku.exceptions import EmailDeliveryError
from sukusuku.schemas.contact import ContactRequest, ContactResponse
from sukusuku.services.email_service import EmailService, get_email_service
from sukusuku.utils.metrics import contact_submissions_total

logger = logging.getLogger(__name__)

router = APIRouter()

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

SUCCESS_MESSAGE = (
    "Thank you for your message! You will receive a confirmation email shortly. "
    "We will get back to you within 24 hours."
)


@router.post("", response_model=ContactResponse)
async def submit_contact(
    body: ContactRequest,
    email_service: EmailService = Depends(get_email_service),
):
    """
    Relay a contact message to the team and confirm to the sender.

    The visitor always gets a success answer once the input is valid; a
    delivery failure is only logged.
    """
    name = (body.name or "").strip()
    email = (body.email or "").strip()
    message = (body.message or "").strip()

    if not name or not email or not message:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="All fields are required")
    if not EMAIL_PATTERN.match(email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email address")

    delivered = True
    try:
        await email_service.send_contact_emails(name, email, message)
    except EmailDeliveryError as e:
        delivered = False
        logger.error(
            f"Contact form delivery failed: {e}",
            extra={"event": "contact_delivery_failed", "error": str(e)},
        )

    contact_submissions_total.labels(delivered=str(delivered).lower()).inc()
    return ContactResponse(message=SUCCESS_MESSAGE, success=True)
