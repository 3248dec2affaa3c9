from __future__ import annotations

from .centroid import CentroidMaintainer
from .pipeline import IngestionPipeline
from .resolver import CategoryResolver

__all__ = ["CategoryResolver", "CentroidMaintainer", "IngestionPipeline"]
