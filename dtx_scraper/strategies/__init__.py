"""Strategy registry."""

from typing import Any, Dict

from ..errors import StrategyNotFoundError
from .approved_dtx import ApprovedDtxStrategy
from .base import ScrapingStrategy

ALL_STRATEGIES = {
    "approved-dtx": ApprovedDtxStrategy,
}


def get_strategy(name: str, settings: Dict[str, Any] = None) -> ScrapingStrategy:
    try:
        strategy_cls = ALL_STRATEGIES[name]
    except KeyError:
        raise StrategyNotFoundError(f"No strategy registered under '{name}'") from None
    return strategy_cls(settings)
