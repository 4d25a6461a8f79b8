"""Bounding boxes and their partition into query-sized grid cells."""

import math
from typing import List

from pydantic import BaseModel, Field, model_validator

# Absorbs float noise such as 0.30000000000000004 / 0.1
_CELL_TOLERANCE = 1e-9


class BoundingBox(BaseModel):
    south: float = Field(ge=-90, le=90)
    west: float = Field(ge=-180, le=180)
    north: float = Field(ge=-90, le=90)
    east: float = Field(ge=-180, le=180)

    @model_validator(mode="after")
    def _check_order(self) -> "BoundingBox":
        if self.south >= self.north:
            raise ValueError("south must be less than north")
        if self.west >= self.east:
            raise ValueError("west must be less than east")
        return self

    @property
    def lat_span(self) -> float:
        return self.north - self.south

    @property
    def lng_span(self) -> float:
        return self.east - self.west


def partition_bbox(bbox: BoundingBox, cell_size: float = 0.1) -> List[BoundingBox]:
    """Split ``bbox`` into cells of ``cell_size`` degrees.

    Cells are ordered south to north, then west to east within a row. The
    last row and column are clipped to the box edges.
    """
    if cell_size <= 0:
        raise ValueError("cell_size must be positive")

    lat_cells = max(1, math.ceil(bbox.lat_span / cell_size - _CELL_TOLERANCE))
    lng_cells = max(1, math.ceil(bbox.lng_span / cell_size - _CELL_TOLERANCE))

    cells = []
    for lat_i in range(lat_cells):
        south = bbox.south + lat_i * cell_size
        north = bbox.north if lat_i == lat_cells - 1 else min(south + cell_size, bbox.north)
        for lng_i in range(lng_cells):
            west = bbox.west + lng_i * cell_size
            east = bbox.east if lng_i == lng_cells - 1 else min(west + cell_size, bbox.east)
            cells.append(BoundingBox(south=south, west=west, north=north, east=east))
    return cells
