from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Mechanism(str, Enum):
    """How a redirect target was chosen"""
    RULE = "rule"
    VARIANT = "variant"
    CONTROL = "control"
    FALLBACK = "fallback"
    NONE = "none"


class RedirectDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_url: str
    mechanism: Mechanism
    matched_rule_id: Optional[int] = None
    matched_variant_id: Optional[int] = None

    @property
    def has_target(self) -> bool:
        return self.mechanism != Mechanism.NONE and bool(self.target_url)

    @classmethod
    def no_target(cls) -> "RedirectDecision":
        return cls(target_url="", mechanism=Mechanism.NONE)
