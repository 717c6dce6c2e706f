"""
Weighted A/B selection.

Buckets are laid out in a fixed order: the implicit control group first
(weight = whatever the active variants leave of 100), then the variants in
the order given. A draw in [0, total) picks the first bucket whose
cumulative upper bound is above it, so zero-weight buckets are never hit.
"""

import random
from typing import List, Optional, Protocol, Sequence, Tuple

from .decision import Mechanism, RedirectDecision

FULL_WEIGHT = 100


class RandomSource(Protocol):
    def random(self) -> float: ...


def _valid_weight(weight) -> bool:
    return isinstance(weight, int) and not isinstance(weight, bool) and weight >= 0


def active_variants(variants: Sequence) -> List:
    """Variants that can receive traffic: active, with a target and a sane weight."""
    return [
        variant for variant in variants
        if variant.is_active and variant.target_url and _valid_weight(variant.weight)
    ]


def control_weight(variants: Sequence) -> int:
    """Share of traffic left for the original URL. Never negative."""
    used = sum(variant.weight for variant in active_variants(variants))
    return max(0, FULL_WEIGHT - used)


def build_buckets(variants: Sequence) -> List[Tuple[Optional[object], int]]:
    """[(None, control_weight), (variant, weight), ...] in selection order."""
    candidates = active_variants(variants)
    buckets: List[Tuple[Optional[object], int]] = [(None, control_weight(candidates))]
    buckets.extend((variant, variant.weight) for variant in candidates)
    return buckets


def _decision(variant, original_url: str) -> RedirectDecision:
    if variant is None:
        return RedirectDecision(target_url=original_url, mechanism=Mechanism.CONTROL)
    return RedirectDecision(
        target_url=variant.target_url,
        mechanism=Mechanism.VARIANT,
        matched_variant_id=variant.id,
    )


def select_variant(
    variants: Sequence,
    original_url: str,
    rng: Optional[RandomSource] = None,
) -> RedirectDecision:
    """
    Pick a variant (or the control group) for one visit.

    Returns a `variant` decision with the variant's id, a `control` decision
    targeting `original_url`, or a `fallback` to `original_url` when there is
    nothing to split traffic between.
    """
    buckets = build_buckets(variants)
    if len(buckets) == 1:
        return RedirectDecision(target_url=original_url, mechanism=Mechanism.FALLBACK)

    total = sum(weight for _, weight in buckets)
    if total <= 0:
        return RedirectDecision(target_url=original_url, mechanism=Mechanism.FALLBACK)

    if rng is None:
        rng = random.Random()
    draw = rng.random() * total

    upper = 0
    for variant, weight in buckets:
        upper += weight
        if weight > 0 and draw < upper:
            return _decision(variant, original_url)

    # rng.random() returned >= 1.0; the last bucket with weight takes it
    variant = next(variant for variant, weight in reversed(buckets) if weight > 0)
    return _decision(variant, original_url)
