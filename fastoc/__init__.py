"""
fastoc: fast orthology-based clustering of gene co-expression networks across species.
"""

from .catalog import GeneCatalog
from .config import NetworkConfig
from .consensus import MembershipMatrix
from .core import MultiSpeciesNetwork

__version__ = "0.1.0"
__all__ = ["MultiSpeciesNetwork", "GeneCatalog", "NetworkConfig", "MembershipMatrix"]
