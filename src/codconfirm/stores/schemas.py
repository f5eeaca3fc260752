"""
Pydantic schemas for the store API.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class StoreCreate(BaseModel):
    name: str = Field(default="", max_length=255)
    url: str = Field(default="", max_length=255, description="Shop domain, e.g. x.myshopify.com")
    access_token: str = Field(default="", description="Admin API access token")
    cod_gateway_name: str = Field(default="", max_length=255)


class StoreResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    url: str
    access_token: str
    is_active: bool
    cod_gateway_name: str
    created_at: datetime


class StoreListResponse(BaseModel):
    stores: list[StoreResponse]


class StoreCreatedResponse(BaseModel):
    store: StoreResponse
