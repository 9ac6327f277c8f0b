"""
Route optimisation heuristics for TripSpot.

This module builds a visiting order with the nearest neighbour
heuristic: starting from the first place, repeatedly travel to the
closest place not yet visited. It provides two entry points:

    - ``nearest_neighbor``: the greedy tour over abstract node indices.
      Costs are requested one step at a time through a callback, so
      nothing forces a full cost matrix to be built up front.
    - ``plan_route``: the live planner. Each step asks the duration
      estimator for every remaining candidate concurrently, then picks
      the fastest one.

The result is not an optimal tour; there is no backtracking or 2‑opt
pass. Driving times may be asymmetric, which the lazy per-step query
respects.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple

from tripspot.advice import FALLBACK_ADVICE
from tripspot.errors import InsufficientLocations
from tripspot.models import Place, Route

logger = logging.getLogger(__name__)

NEED_MORE_ADVICE = "请选择更多地点以规划路线。"

# leg_costs(current, candidates) -> one cost per candidate, None if unknown
LegCosts = Callable[[int, List[int]], Sequence[Optional[float]]]


def matrix_costs(dist_matrix: Sequence[Sequence[float]]) -> LegCosts:
    """Adapt a precomputed square matrix to the ``LegCosts`` callback."""
    return lambda current, candidates: [dist_matrix[current][j] for j in candidates]


def nearest_neighbor(count: int, leg_costs: LegCosts, start: int = 0) -> Tuple[List[int], float]:
    """Construct a route using the nearest neighbor heuristic.

    Args:
        count: Number of nodes, indexed ``0 .. count - 1``.
        leg_costs: Callback returning the cost from the current node to
            each candidate, in candidate order. ``None`` marks a leg that
            could not be resolved.
        start: Index of the start node.

    Returns:
        ``(route, total_cost)``. The route starts with ``start`` and holds
        each node at most once. If a step resolves no candidate at all,
        the partial route built so far is returned.
    """
    if count == 0:
        return [], 0.0
    unvisited = [i for i in range(count) if i != start]
    route = [start]
    current = start
    total = 0.0
    while unvisited:
        costs = leg_costs(current, unvisited)
        resolved = [(cost, j) for j, cost in zip(unvisited, costs) if cost is not None]
        if not resolved:
            logger.warning("No leg from node %d could be resolved; stopping after %d stops", current, len(route))
            break
        # min() keeps the first candidate on ties, i.e. input order
        cost, next_node = min(resolved, key=lambda pair: pair[0])
        route.append(next_node)
        unvisited.remove(next_node)
        total += cost
        current = next_node
    return route, total


def round_minutes(total_seconds: float) -> int:
    """Seconds to whole minutes, rounding halves up."""
    return int(math.floor(total_seconds / 60.0 + 0.5))


def _concurrent_costs(
    places: Sequence[Place],
    estimate: Callable[[Place, Place], float],
    pool: ThreadPoolExecutor,
) -> LegCosts:
    def leg_costs(current: int, candidates: List[int]) -> List[Optional[float]]:
        futures = [pool.submit(estimate, places[current], places[j]) for j in candidates]
        costs: List[Optional[float]] = []
        for j, future in zip(candidates, futures):
            try:
                seconds = float(future.result())
            except Exception:
                logger.exception("Duration estimate %s -> %s failed", places[current].name, places[j].name)
                costs.append(None)
                continue
            costs.append(seconds if math.isfinite(seconds) and seconds >= 0 else None)
        return costs

    return leg_costs


def plan_route(
    locations: Sequence[Place],
    estimate: Callable[[Place, Place], float],
    advisor: Optional[Callable[[Sequence[Place], float], str]] = None,
    max_workers: int = 8,
) -> Route:
    """Plan a visiting order over located places.

    Args:
        locations: Places to visit; the first one is the starting point.
        estimate: Travel time in seconds between two places, e.g.
            ``DurationEstimator.estimate``.
        advisor: Optional callable producing the advice text from the
            ordered places and the total minutes.
        max_workers: Upper bound on concurrent estimate calls per step.

    Returns:
        The planned ``Route``. With fewer than two places a trivial route
        of the given ids is returned without estimating anything.

    Raises:
        InsufficientLocations: Two or more places were given but some of
            them are not located, or ids repeat.
    """
    locations = list(locations)
    if len(locations) < 2:
        return Route(sequence=[p.id for p in locations], total_duration_minutes=0, advice=NEED_MORE_ADVICE)

    unlocated = [p.name for p in locations if not p.located]
    if unlocated:
        raise InsufficientLocations(f"Cannot plan a route through unlocated places: {', '.join(unlocated)}")
    if len({p.id for p in locations}) != len(locations):
        raise InsufficientLocations("Place ids must be unique within a route")

    started = time.monotonic()
    workers = max(1, min(max_workers, len(locations) - 1))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tripspot-leg") as pool:
        order, total_seconds = nearest_neighbor(len(locations), _concurrent_costs(locations, estimate, pool))

    ordered = [locations[i] for i in order]
    total_minutes = round_minutes(total_seconds)
    logger.info(
        "Planned %d of %d places in %.2fs: %d min",
        len(ordered),
        len(locations),
        time.monotonic() - started,
        total_minutes,
    )

    advice = ""
    if advisor is not None:
        try:
            advice = advisor(ordered, total_minutes)
        except Exception:
            logger.exception("Advisor failed; using fallback advice")
            advice = FALLBACK_ADVICE

    return Route(sequence=[p.id for p in ordered], total_duration_minutes=total_minutes, advice=advice)
