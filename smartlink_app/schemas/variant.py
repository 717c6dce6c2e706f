from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from smartlink_app.schemas.url import SafeUrl


class VariantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["Variant A"])
    target_url: SafeUrl
    weight: int = Field(50, ge=0, le=100, description="Share of traffic, 0-100")
    is_active: bool = True


class VariantUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    target_url: Optional[SafeUrl] = None
    weight: Optional[int] = Field(None, ge=0, le=100)
    is_active: Optional[bool] = None


class VariantResponse(BaseModel):
    id: int
    url_id: int
    name: str
    target_url: str
    weight: int
    is_active: bool
    click_count: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class VariantStat(BaseModel):
    """
    Per-bucket numbers. The control group (visits left on the original URL)
    is reported with `is_control=True` and no variant_id.
    """
    variant_id: Optional[int] = None
    name: str
    target_url: str
    weight: int
    click_count: int
    click_through_rate: float
    is_control: bool = False


class VariantList(BaseModel):
    variants: List[VariantResponse]
    total_clicks: int
    control_weight: int
    stats: List[VariantStat]
