"""Pydantic schemas for slot and stock operations"""
from pydantic import BaseModel, Field
from typing import Optional


class AddSlotRequest(BaseModel):
    product_id: int
    slot_number: int
    max_capacity: int = Field(gt=0)
    quantity: int = 0
    low_threshold: int = 0


class RestockRequest(BaseModel):
    quantity: int
    notes: Optional[str] = None


class RestockToMaxRequest(BaseModel):
    notes: Optional[str] = None
