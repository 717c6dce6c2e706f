from typing import Optional

from sqlalchemy.orm import Session

from smartlink_app.cache.strategies import CacheStrategy
from smartlink_app.config import settings
from smartlink_app.models import URL, RoutingRule
from smartlink_app.routing import RoutingConditions, VisitContext, resolve
from smartlink_app.routing.templates import RULE_TEMPLATES, get_template
from smartlink_app.schemas.routing import (
    EvaluationResult,
    RoutingRuleCreate,
    RoutingRuleList,
    RoutingRuleResponse,
    RoutingRuleUpdate,
    RuleFromTemplate,
    RuleStat,
    RuleTemplateList,
    RuleTemplateResponse,
    SmartRoutingSettings,
    SmartRoutingSettingsUpdate,
)
from smartlink_app.services.errors import RoutingLimitError, rounded_percentage
from smartlink_app.services.url_service import build_redirect_snapshot, snapshot_cache_key


class RoutingService:
    """
    Smart routing rules and settings for a short link.

    Links are addressed by short code; lookups for unknown or deleted links
    return None/False. Every write drops the link's cached redirect snapshot.
    """

    def __init__(self, db: Session, cache: Optional[CacheStrategy] = None):
        self.db = db
        self.cache = cache

    def _get_url(self, short_code: str) -> Optional[URL]:
        return self.db.query(URL).filter(
            URL.short_code == short_code,
            URL.is_active == True  # noqa: E712
        ).first()

    def _get_rule(self, url: URL, rule_id: int) -> Optional[RoutingRule]:
        return self.db.query(RoutingRule).filter(
            RoutingRule.id == rule_id,
            RoutingRule.url_id == url.id,
        ).first()

    async def _invalidate(self, url: URL):
        if self.cache:
            await self.cache.delete(snapshot_cache_key(url.short_code))

    @staticmethod
    def _check_conditions(conditions: RoutingConditions):
        if len(conditions.conditions) > settings.max_conditions_per_rule:
            raise RoutingLimitError(
                f"A rule can have at most {settings.max_conditions_per_rule} conditions"
            )

    async def create_rule(self, short_code: str, data: RoutingRuleCreate) -> Optional[RoutingRule]:
        """
        Add a rule and switch smart routing on.

        Raises:
            RoutingLimitError: rule or condition limit exceeded
        """
        url = self._get_url(short_code)
        if not url:
            return None

        rule_count = self.db.query(RoutingRule).filter(RoutingRule.url_id == url.id).count()
        if rule_count >= settings.max_rules_per_url:
            raise RoutingLimitError(
                f"A link can have at most {settings.max_rules_per_url} routing rules"
            )
        self._check_conditions(data.conditions)

        rule = RoutingRule(
            url_id=url.id,
            name=data.name,
            target_url=data.target_url,
            priority=data.priority,
            is_active=data.is_active,
            conditions=data.conditions.model_dump(mode="json"),
        )
        self.db.add(rule)
        url.is_smart_routing = True
        self.db.commit()
        self.db.refresh(rule)

        await self._invalidate(url)
        return rule

    async def create_from_template(self, short_code: str, data: RuleFromTemplate) -> Optional[RoutingRule]:
        template = get_template(data.template_key)
        if template is None:
            raise RoutingLimitError(f"Unknown routing template '{data.template_key}'")

        return await self.create_rule(short_code, RoutingRuleCreate(
            name=data.name or template.name,
            target_url=data.target_url,
            priority=data.priority,
            conditions=template.conditions,
        ))

    async def list_rules(self, short_code: str) -> Optional[RoutingRuleList]:
        """Rules in evaluation order, with each rule's share of all matches."""
        url = self._get_url(short_code)
        if not url:
            return None

        rules = self.db.query(RoutingRule).filter(
            RoutingRule.url_id == url.id
        ).order_by(RoutingRule.priority.desc(), RoutingRule.id.asc()).all()

        total_matches = sum(rule.match_count for rule in rules)
        return RoutingRuleList(
            rules=[RoutingRuleResponse.model_validate(rule) for rule in rules],
            total_matches=total_matches,
            stats=[
                RuleStat(
                    rule_id=rule.id,
                    name=rule.name,
                    match_count=rule.match_count,
                    match_percentage=rounded_percentage(rule.match_count, total_matches),
                )
                for rule in rules
            ],
        )

    async def get_rule(self, short_code: str, rule_id: int) -> Optional[RoutingRule]:
        url = self._get_url(short_code)
        if not url:
            return None
        return self._get_rule(url, rule_id)

    async def update_rule(
        self,
        short_code: str,
        rule_id: int,
        data: RoutingRuleUpdate,
    ) -> Optional[RoutingRule]:
        url = self._get_url(short_code)
        if not url:
            return None
        rule = self._get_rule(url, rule_id)
        if not rule:
            return None

        for field in ("name", "target_url", "priority", "is_active"):
            value = getattr(data, field)
            # None means "leave as is"; these columns are not nullable
            if value is not None:
                setattr(rule, field, value)
        if data.conditions is not None:
            self._check_conditions(data.conditions)
            rule.conditions = data.conditions.model_dump(mode="json")

        self.db.commit()
        self.db.refresh(rule)
        await self._invalidate(url)
        return rule

    async def delete_rule(self, short_code: str, rule_id: int) -> bool:
        """Delete a rule; removing the last one switches smart routing off."""
        url = self._get_url(short_code)
        if not url:
            return False
        rule = self._get_rule(url, rule_id)
        if not rule:
            return False

        self.db.delete(rule)
        self.db.flush()
        remaining = self.db.query(RoutingRule).filter(RoutingRule.url_id == url.id).count()
        if remaining == 0:
            url.is_smart_routing = False
        self.db.commit()

        await self._invalidate(url)
        return True

    def _settings_of(self, url: URL) -> SmartRoutingSettings:
        return SmartRoutingSettings(
            is_smart_routing=url.is_smart_routing,
            default_url=url.default_url,
            rule_count=self.db.query(RoutingRule).filter(RoutingRule.url_id == url.id).count(),
        )

    async def get_settings(self, short_code: str) -> Optional[SmartRoutingSettings]:
        url = self._get_url(short_code)
        if not url:
            return None
        return self._settings_of(url)

    async def update_settings(
        self,
        short_code: str,
        data: SmartRoutingSettingsUpdate,
    ) -> Optional[SmartRoutingSettings]:
        url = self._get_url(short_code)
        if not url:
            return None

        if data.is_smart_routing is not None:
            url.is_smart_routing = data.is_smart_routing
        if "default_url" in data.model_fields_set:
            url.default_url = data.default_url
        self.db.commit()
        self.db.refresh(url)

        await self._invalidate(url)
        return self._settings_of(url)

    def list_templates(self) -> RuleTemplateList:
        return RuleTemplateList(templates=[
            RuleTemplateResponse(
                key=key,
                name=template.name,
                description=template.description,
                conditions=template.conditions.model_dump(mode="json"),
            )
            for key, template in RULE_TEMPLATES.items()
        ])

    async def evaluate(self, short_code: str, ctx: VisitContext) -> Optional[EvaluationResult]:
        """
        Dry run against the current DB state: no cache, no counters, no click.
        """
        url = self._get_url(short_code)
        if not url:
            return None

        snapshot = build_redirect_snapshot(url)
        decision = resolve(snapshot.url, snapshot.rules, snapshot.variants, ctx)
        rule_names = {rule.id: rule.name for rule in snapshot.rules}
        return EvaluationResult(
            target_url=decision.target_url or None,
            mechanism=decision.mechanism,
            matched_rule_id=decision.matched_rule_id,
            matched_rule_name=rule_names.get(decision.matched_rule_id),
            matched_variant_id=decision.matched_variant_id,
        )
