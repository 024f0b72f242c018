"""Portfolio blending and merging."""

from .blender import BlendResult, PortfolioBlender, PortfolioMetadata
from .merger import MergeStats, PositionMerger

__all__ = ["BlendResult", "MergeStats", "PortfolioBlender", "PortfolioMetadata", "PositionMerger"]
