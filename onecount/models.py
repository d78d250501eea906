# onecount/models.py
import time
import uuid
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


def new_id() -> str:
    return str(uuid.uuid4())


class BillStatus(str, Enum):
    """Where a logical bill currently lives. A bill is either in the active slot or in the archive."""
    IDLE = "idle"
    EDITING = "editing"
    ARCHIVED = "archived"


# --- Pydantic Models ---
class Member(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(description="Display name, also the cross-bill aggregation key")
    color: str = Field(default="slate", description="Categorical color tag")


class BillItem(BaseModel):
    """Items are replaced through ``model_copy``, never edited in place."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    name: str
    price: float = Field(default=0.0, ge=0, description="Line price in the bill currency")
    assigned_members: List[str] = Field(default_factory=list, description="Member ids sharing this item")

    @field_validator("assigned_members")
    @classmethod
    def _dedupe_members(cls, value: List[str]) -> List[str]:
        # Keeps first occurrence order, drops repeats
        return list(dict.fromkeys(value))


class BillMetadata(BaseModel):
    name: str
    date: str


class ParsedItem(BaseModel):
    name: str = Field(description="Name of the item")
    price: float = Field(description="Price of the item")


class ParsedReceipt(BaseModel):
    items: List[ParsedItem] = Field(default_factory=list)
    tip: float = Field(default=0.0, description="Total tip amount found on receipt")
    merchant_name: Optional[str] = Field(default=None, description="Name of the store or merchant")
    date: Optional[str] = Field(default=None, description="Date of receipt")


class Folder(BaseModel):
    """Immutable snapshot of a finalized bill."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    name: str
    date: str
    items: Tuple[BillItem, ...] = ()
    members: Tuple[Member, ...] = ()
    tip: float = 0.0
    total: float = 0.0
    receipt_image: Optional[str] = Field(default=None, description="Base64 encoded receipt image")
    created_at: float = Field(default_factory=time.time)

    @property
    def status(self) -> BillStatus:
        return BillStatus.ARCHIVED


class MemberShare(BaseModel):
    member_id: str
    name: str
    color: str
    subtotal: float
    tip_share: float
    total: float


class BillBreakdown(BaseModel):
    subtotal: float
    tip: float
    final_total: float
    unassigned: float = Field(description="Part of final_total not attributed to any member")
    members: List[MemberShare] = Field(default_factory=list)


class PersonTotal(BaseModel):
    name: str
    color: str
    amount: float


class ArchiveSummary(BaseModel):
    grand_total: float
    per_person: List[PersonTotal] = Field(default_factory=list)
