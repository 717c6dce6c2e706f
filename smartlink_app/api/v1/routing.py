from fastapi import APIRouter, Depends, HTTPException, status
from smartlink_app.dependencies import get_routing_service
from smartlink_app.routing import VisitContext
from smartlink_app.schemas.routing import (
    EvaluationResult,
    RoutingRuleCreate,
    RoutingRuleList,
    RoutingRuleResponse,
    RoutingRuleUpdate,
    RuleFromTemplate,
    RuleTemplateList,
    SmartRoutingSettings,
    SmartRoutingSettingsUpdate,
)
from smartlink_app.services.errors import RoutingLimitError
from smartlink_app.services.routing_service import RoutingService

router = APIRouter(prefix="/urls/{short_code}/routing", tags=["routing"])
templates_router = APIRouter(prefix="/routing", tags=["routing"])

URL_NOT_FOUND = "Short URL not found"
RULE_NOT_FOUND = "Routing rule not found"


def _not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


@templates_router.get("/templates", response_model=RuleTemplateList)
def list_templates(routing_service: RoutingService = Depends(get_routing_service)):
    """Predefined condition sets (app download, language, business hours, device)"""
    return routing_service.list_templates()


@router.get("/rules", response_model=RoutingRuleList)
async def list_rules(
    short_code: str,
    routing_service: RoutingService = Depends(get_routing_service)
):
    """Rules in evaluation order with match statistics"""
    rules = await routing_service.list_rules(short_code)
    if rules is None:
        raise _not_found(URL_NOT_FOUND)
    return rules


@router.post("/rules", response_model=RoutingRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    short_code: str,
    rule_data: RoutingRuleCreate,
    routing_service: RoutingService = Depends(get_routing_service)
):
    """Add a rule. Enables smart routing on the link."""
    try:
        rule = await routing_service.create_rule(short_code, rule_data)
    except RoutingLimitError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if rule is None:
        raise _not_found(URL_NOT_FOUND)
    return rule


@router.post("/rules/from-template", response_model=RoutingRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule_from_template(
    short_code: str,
    template_data: RuleFromTemplate,
    routing_service: RoutingService = Depends(get_routing_service)
):
    try:
        rule = await routing_service.create_from_template(short_code, template_data)
    except RoutingLimitError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if rule is None:
        raise _not_found(URL_NOT_FOUND)
    return rule


@router.get("/rules/{rule_id}", response_model=RoutingRuleResponse)
async def get_rule(
    short_code: str,
    rule_id: int,
    routing_service: RoutingService = Depends(get_routing_service)
):
    rule = await routing_service.get_rule(short_code, rule_id)
    if rule is None:
        raise _not_found(RULE_NOT_FOUND)
    return rule


@router.patch("/rules/{rule_id}", response_model=RoutingRuleResponse)
async def update_rule(
    short_code: str,
    rule_id: int,
    rule_data: RoutingRuleUpdate,
    routing_service: RoutingService = Depends(get_routing_service)
):
    try:
        rule = await routing_service.update_rule(short_code, rule_id, rule_data)
    except RoutingLimitError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if rule is None:
        raise _not_found(RULE_NOT_FOUND)
    return rule


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    short_code: str,
    rule_id: int,
    routing_service: RoutingService = Depends(get_routing_service)
):
    """Delete a rule. Deleting the last rule disables smart routing."""
    if not await routing_service.delete_rule(short_code, rule_id):
        raise _not_found(RULE_NOT_FOUND)


@router.get("/settings", response_model=SmartRoutingSettings)
async def get_settings(
    short_code: str,
    routing_service: RoutingService = Depends(get_routing_service)
):
    result = await routing_service.get_settings(short_code)
    if result is None:
        raise _not_found(URL_NOT_FOUND)
    return result


@router.patch("/settings", response_model=SmartRoutingSettings)
async def update_settings(
    short_code: str,
    settings_data: SmartRoutingSettingsUpdate,
    routing_service: RoutingService = Depends(get_routing_service)
):
    """Toggle smart routing and set or clear the default URL"""
    result = await routing_service.update_settings(short_code, settings_data)
    if result is None:
        raise _not_found(URL_NOT_FOUND)
    return result


@router.post("/evaluate", response_model=EvaluationResult)
async def evaluate(
    short_code: str,
    visit: VisitContext,
    routing_service: RoutingService = Depends(get_routing_service)
):
    """Where would this visit go? Nothing is counted or recorded."""
    result = await routing_service.evaluate(short_code, visit)
    if result is None:
        raise _not_found(URL_NOT_FOUND)
    return result
