"""
Default tube content.

The core never chooses what to teach; it only needs the seed queue for a
new learner. A content configuration supplies ordered
(tube, position, content unit) rows and positions_from_defaults() maps them
into the stitch_positions shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol

TUBES = (1, 2, 3)


@dataclass(frozen=True)
class DefaultTubePosition:
    """One seed row: content unit at a position within a tube."""

    tube_id: int | str  # 1 or "tube1"
    position: int
    content_unit_id: str


class ContentConfig(Protocol):
    """Source of the default seed content."""

    def get_default_tube_positions(self) -> list[DefaultTubePosition]: ...


@dataclass
class StaticContentConfig:
    """
    Built-in seed: units_per_tube units in each tube.

    Unit ids follow the stitch_t{tube}_p{position} pattern so every new
    learner starts from identical content.
    """

    units_per_tube: int = 20

    def get_default_tube_positions(self) -> list[DefaultTubePosition]:
        return [
            DefaultTubePosition(
                tube_id=tube,
                position=position,
                content_unit_id=f"stitch_t{tube}_p{position}",
            )
            for tube in TUBES
            for position in range(1, self.units_per_tube + 1)
        ]


def normalize_tube_id(tube_id: int | str) -> int:
    """Accept 1, "1" or "tube1" and return the tube number."""
    if isinstance(tube_id, str):
        raw = tube_id.strip().lower()
        if raw.startswith("tube"):
            raw = raw[len("tube"):]
        try:
            tube = int(raw)
        except ValueError:
            raise ValueError(f"Unrecognised tube id: {tube_id!r}") from None
    else:
        tube = int(tube_id)

    if tube not in TUBES:
        raise ValueError(f"Tube out of range: {tube_id!r}")
    return tube


def positions_from_defaults(rows: Iterable[DefaultTubePosition]) -> dict[int, dict[int, str]]:
    """
    Map seed rows into stitch_positions (tube -> position -> content unit).

    Rows are ordered by (tube, position) regardless of input order. Every
    tube key is present even if the configuration supplies no rows for it.
    """
    positions: dict[int, dict[int, str]] = {tube: {} for tube in TUBES}
    ordered = sorted(
        ((normalize_tube_id(row.tube_id), row.position, row.content_unit_id) for row in rows),
        key=lambda item: (item[0], item[1]),
    )
    for tube, position, unit_id in ordered:
        if position < 1:
            raise ValueError(f"Positions are 1-based, got {position} in tube {tube}")
        positions[tube][position] = unit_id
    return positions
