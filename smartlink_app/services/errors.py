"""
Business-rule violations raised by the services.

Both are ValueErrors; the API layer turns them into 400 responses. Missing
records are not errors here, services return None/False for those.
"""


class RoutingLimitError(ValueError):
    """Too many rules on a link, too many conditions in a rule, or unknown template."""


class VariantWeightError(ValueError):
    """Active variant weights would add up to more than 100."""


def rounded_percentage(part: int, total: int) -> float:
    """part/total as a percentage with one decimal, halves rounded up. 0 when total is 0."""
    if total <= 0:
        return 0.0
    return int(part * 1000 / total + 0.5) / 10
