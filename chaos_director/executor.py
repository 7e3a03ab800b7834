"""Per-tick write budget for world cell mutations."""
from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional

from .models import Cell, Coord
from .world import WorldSurface

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_BUDGET = 200


class MutationExecutor:
    """Applies cell writes while the per-tick budget lasts.

    Writes past the budget are refused rather than deferred. Bulk edits
    must check the result and accept a partial structure.
    """

    def __init__(self, world: WorldSurface, budget: int = DEFAULT_BLOCK_BUDGET) -> None:
        self._world = world
        self._budget = max(1, budget)
        self._used = 0
        self.refused = 0

    @property
    def budget(self) -> int:
        return self._budget

    @budget.setter
    def budget(self, value: int) -> None:
        self._budget = max(1, value)

    @property
    def used(self) -> int:
        return self._used

    @property
    def remaining(self) -> int:
        return max(0, self._budget - self._used)

    def begin_tick(self) -> None:
        if self.refused:
            logger.debug("Refused %s cell writes over budget last tick", self.refused)
        self._used = 0
        self.refused = 0

    def write(self, region: str, coord: Coord, cell_type: str) -> bool:
        if self._used >= self._budget:
            self.refused += 1
            return False
        self._world.write_cell(region, coord, cell_type)
        self._used += 1
        return True

    def replace_cells(
        self,
        region: str,
        coords: Iterable[Coord],
        cell_type: str,
        only_if: Optional[Callable[[str], bool]] = None,
    ) -> List[Cell]:
        """Write ``cell_type`` over ``coords`` and return the cells changed.

        Each prior type is read before its write. Cells already holding
        ``cell_type`` or rejected by ``only_if`` are left alone, and the walk
        stops as soon as the budget runs out. If the world raises part way,
        the cells already changed are restored before the error propagates.
        """

        changed: List[Cell] = []
        try:
            for coord in coords:
                prior = self._world.read_cell(region, coord)
                if prior == cell_type or (only_if is not None and not only_if(prior)):
                    continue
                if not self.write(region, coord, cell_type):
                    break
                changed.append(Cell(coord[0], coord[1], coord[2], prior))
        except Exception:
            self._restore(region, changed)
            raise
        return changed

    def _restore(self, region: str, cells: List[Cell]) -> None:
        for cell in reversed(cells):
            try:
                self._world.write_cell(region, cell.coord, cell.prior)
            except Exception:
                logger.warning("Could not restore %s in %s after a failed write", cell.coord, region)


__all__ = ["DEFAULT_BLOCK_BUDGET", "MutationExecutor"]
