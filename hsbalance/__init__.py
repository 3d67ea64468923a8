"""hsbalance: load-balanced descriptors for v2 onion services."""

__version__ = "0.1.0"

from .allocator import allocate
from .builder import DescriptorBuilder
from .collector import DescriptorCollector, PendingRequest
from .config import BalancerConfig, Config, ControlConfig
from .orchestrator import BalanceResult, Balancer
from .publisher import PublishReport, Publisher

__all__ = [
    "BalanceResult",
    "Balancer",
    "BalancerConfig",
    "Config",
    "ControlConfig",
    "DescriptorBuilder",
    "DescriptorCollector",
    "PendingRequest",
    "PublishReport",
    "Publisher",
    "allocate",
]
