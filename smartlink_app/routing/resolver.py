from typing import Optional, Sequence

from .context import VisitContext
from .decision import Mechanism, RedirectDecision
from .evaluator import select_rule
from .variants import RandomSource, active_variants, select_variant


def resolve(
    url,
    rules: Sequence,
    variants: Sequence,
    ctx: VisitContext,
    rng: Optional[RandomSource] = None,
) -> RedirectDecision:
    """
    Decide where one visit to a short link goes.

    Order of precedence:
      1. smart routing on: first matching rule by priority
      2. smart routing on, nothing matched, default_url set: default_url
      3. A/B testing on with active variants: weighted variant / control split
      4. the original URL

    `url` is any object with `original_url`, `is_smart_routing`,
    `default_url` and `is_ab_test`. Nothing here touches counters or storage.
    """
    original_url = url.original_url or ""

    if url.is_smart_routing:
        if rules:
            rule = select_rule(rules, ctx)
            if rule is not None:
                return RedirectDecision(
                    target_url=rule.target_url,
                    mechanism=Mechanism.RULE,
                    matched_rule_id=rule.id,
                )
        if url.default_url:
            return RedirectDecision(target_url=url.default_url, mechanism=Mechanism.FALLBACK)

    if url.is_ab_test and active_variants(variants):
        decision = select_variant(variants, original_url, rng)
    else:
        decision = RedirectDecision(target_url=original_url, mechanism=Mechanism.FALLBACK)

    if not decision.target_url:
        return RedirectDecision.no_target()
    return decision
