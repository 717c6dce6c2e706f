from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from smartlink_app.routing.conditions import RoutingConditions
from smartlink_app.routing.decision import Mechanism
from smartlink_app.schemas.url import SafeUrl


class RoutingRuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    target_url: SafeUrl
    priority: int = Field(0, ge=0, le=10000, description="Higher runs first")
    is_active: bool = True
    conditions: RoutingConditions

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "iOS users",
                "target_url": "https://apps.apple.com/app/id123",
                "priority": 100,
                "conditions": {
                    "operator": "AND",
                    "conditions": [{"type": "os", "operator": "equals", "value": "iOS"}],
                },
            }
        }
    )


class RoutingRuleUpdate(BaseModel):
    """Partial update; omitted fields are left as they are"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    target_url: Optional[SafeUrl] = None
    priority: Optional[int] = Field(None, ge=0, le=10000)
    is_active: Optional[bool] = None
    conditions: Optional[RoutingConditions] = None


class RuleFromTemplate(BaseModel):
    template_key: str = Field(..., examples=["APP_DOWNLOAD_IOS"])
    target_url: SafeUrl
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    priority: int = Field(0, ge=0, le=10000)


class RoutingRuleResponse(BaseModel):
    id: int
    url_id: int
    name: str
    target_url: str
    priority: int
    is_active: bool
    conditions: Dict[str, Any]
    match_count: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RuleStat(BaseModel):
    rule_id: int
    name: str
    match_count: int
    match_percentage: float


class RoutingRuleList(BaseModel):
    rules: List[RoutingRuleResponse]
    total_matches: int
    stats: List[RuleStat]


class SmartRoutingSettingsUpdate(BaseModel):
    is_smart_routing: Optional[bool] = None
    # Send null to clear
    default_url: Optional[SafeUrl] = None


class SmartRoutingSettings(BaseModel):
    is_smart_routing: bool
    default_url: Optional[str] = None
    rule_count: int

    model_config = ConfigDict(from_attributes=True)


class RuleTemplateResponse(BaseModel):
    key: str
    name: str
    description: str
    conditions: Dict[str, Any]


class RuleTemplateList(BaseModel):
    templates: List[RuleTemplateResponse]


class EvaluationResult(BaseModel):
    """Dry-run result: where this visit would go, without counting it"""
    target_url: Optional[str] = None
    mechanism: Mechanism
    matched_rule_id: Optional[int] = None
    matched_rule_name: Optional[str] = None
    matched_variant_id: Optional[int] = None
