from typing import Optional

from pydantic import BaseModel, Field


class CheckoutRequest(BaseModel):
    """
    Body of both checkout endpoints. ``language`` is what the visitor picked
    in the page's language menu; currency still follows Accept-Language.
    """

    language: Optional[str] = None


class PortalSessionRequest(BaseModel):
    customer_id: Optional[str] = Field(default=None, alias="customerId")


class PortalLinkRequest(BaseModel):
    email: Optional[str] = None
    locale: Optional[str] = None
