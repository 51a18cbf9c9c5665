"""
Pydantic schemas for the contact form.
Fields are optional here so the route can answer 400 with a form-friendly
message instead of a list of field errors.
"""
from typing import Optional

from sukusuku.schemas.base import CamelModel


class ContactRequest(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    message: Optional[str] = None


class ContactResponse(CamelModel):
    message: str
    success: bool
