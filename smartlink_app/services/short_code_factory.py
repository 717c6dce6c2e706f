"""
Picks and caches the short code strategy.
"""

from enum import Enum
from smartlink_app.services.short_code_strategies import (
    ShortCodeStrategy,
    RandomShortCodeStrategy,
    Base62ShortCodeStrategy
)
from smartlink_app.config import settings


class ShortCodeStrategyType(Enum):
    """Available short code generation strategies"""
    RANDOM = "random"
    BASE62 = "base62"


def _build_random() -> ShortCodeStrategy:
    return RandomShortCodeStrategy(length=settings.short_url_length, max_retries=settings.max_retries)


def _build_base62() -> ShortCodeStrategy:
    return Base62ShortCodeStrategy(salt=settings.short_code_salt, max_length=settings.short_url_length)


_BUILDERS = {
    ShortCodeStrategyType.RANDOM: _build_random,
    ShortCodeStrategyType.BASE62: _build_base62,
}


class ShortCodeFactory:
    """One cached strategy instance per type"""

    _instances = {}

    @classmethod
    def create_strategy(cls, strategy_type: ShortCodeStrategyType = None) -> ShortCodeStrategy:
        """
        Return the strategy for `strategy_type`, or the configured one when omitted.

        Raises:
            ValueError: unknown strategy type (including a bad SHORT_CODE_STRATEGY)
        """
        if strategy_type is None:
            strategy_type = ShortCodeStrategyType(settings.short_code_strategy)

        if strategy_type not in cls._instances:
            builder = _BUILDERS.get(strategy_type)
            if builder is None:
                raise ValueError(f"Unknown strategy type: {strategy_type}")
            cls._instances[strategy_type] = builder()
        return cls._instances[strategy_type]
