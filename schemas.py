from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr


class BudgetIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(..., gt=0)
    max_visits: Optional[int] = Field(default=None, ge=0)


class BudgetPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: StrictStr = Field(..., min_length=1, max_length=100)
    amount: Decimal
    max_visits: Optional[StrictInt] = Field(default=None, ge=0)


class TransactionPatchIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    normalized_category: Optional[StrictStr] = Field(default=None, max_length=100)
    is_shared: Optional[StrictBool] = None


class AccountPatchIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_shared_source: StrictBool


class InstitutionIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=200)
    institution_id: Optional[str] = Field(default=None, max_length=100)


class ExchangeTokenIn(BaseModel):
    public_token: str = Field(..., min_length=1)
    institution: Optional[InstitutionIn] = None
