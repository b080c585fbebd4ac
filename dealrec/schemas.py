"""Pydantic schemas for catalog payloads, user profiles and results.

Field names follow Python conventions; aliases match the camelCase keys
used by the upstream catalog feed and the persisted tables.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DealCode(BaseModel):
    """Voucher code attached to a catalog deal."""

    code: str
    summary: str = ""


class CatalogItem(BaseModel):
    """One deal as returned by the upstream catalog feed."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="allow",
        coerce_numbers_to_str=True
    )

    id: str = Field(..., description="Catalog row id")
    deal_id: str = Field(..., alias="dealId")
    merchant_name: str = Field(..., alias="merchantName")
    logo: str = ""
    logo_absolute_url: str = Field(default="", alias="logoAbsoluteUrl")
    cashback_type: str = Field(default="", alias="cashbackType")
    cashback: float = 0.0
    currency: str = ""
    domains: List[str] = Field(default_factory=list)
    countries: List[str] = Field(default_factory=list)
    codes: List[DealCode] = Field(default_factory=list)
    start_date: Optional[str] = Field(default=None, alias="startDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")
    categories: List[str] = Field(default_factory=list)
    expiration_date: Optional[str] = Field(
        default=None,
        alias="expirationDate",
        description="Falls back to endDate when absent"
    )

    @property
    def expires(self) -> Optional[str]:
        return self.expiration_date or self.end_date


class Geolocation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    country_code: str = Field(..., alias="countryCode")
    ip: str = ""


class SurveyAnswer(BaseModel):
    answer: str = ""


class UserProfile(BaseModel):
    """Profile used by both recommendation pathways."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    interests: List[str] = Field(default_factory=list)
    shopping_frequency: str = Field(default="", alias="shoppingFrequency")
    survey_responses: Dict[str, SurveyAnswer] = Field(
        default_factory=dict,
        alias="surveyResponses"
    )
    geolocation: Optional[Geolocation] = None

    def to_payload(self) -> Dict[str, Any]:
        """Camel-cased dict consumed by the vectorizer."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Recommendation(BaseModel):
    """Vector pathway result."""

    model_config = ConfigDict(populate_by_name=True)

    deal_id: str = Field(..., alias="dealId")
    confidence: float

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
