from .cache import EstimateCache
from .runner import OptimizationRunner
