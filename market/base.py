"""Base market-context source."""
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from common.logger import get_logger


class BaseSource(ABC):
    """One sub-report of the market context (technicals, macro, news).

    ``fetch`` may hit a live source and is allowed to raise; ``simulate`` must
    not, it is the value substituted when ``fetch`` fails.
    """
    name: str = ""

    def __init__(self, rng: Optional[np.random.Generator] = None):
        self.logger = get_logger(self.__class__.__name__)
        self.rng = rng if rng is not None else np.random.default_rng()

    @abstractmethod
    def fetch(self, symbol: str, price: float):
        pass

    @abstractmethod
    def simulate(self, symbol: str, price: float):
        pass

    def uniform(self, low: float, high: float) -> float:
        return float(self.rng.uniform(low, high))
