import math
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from .. import config
from ..database.ops import DBOperations
from ..exceptions import InvalidQuery
from ..models import PhotoRecord, QueryParams

KIND_ALL = "all"
KIND_BBOX = "bbox"
KIND_RADIUS = "radius"

# Request-level keys that may ride along with query parameters
PASSTHROUGH_KEYS = {"token"}

ALLOWED_KEYS: Dict[str, Set[str]] = {
    KIND_ALL: {"kind", "limit"},
    KIND_BBOX: {"kind", "limit", "north", "south", "east", "west"},
    KIND_RADIUS: {"kind", "limit", "lat", "lng", "radiusMeters"},
}
KIND_ALIASES = {"viewport": KIND_BBOX}


def _parse_float(params: Mapping[str, Any], name: str, lo: float = -math.inf, hi: float = math.inf) -> float:
    raw = params.get(name)
    if raw is None or raw == "":
        raise InvalidQuery(name, "is required")
    if isinstance(raw, bool):
        raise InvalidQuery(name, f"must be a number, got {raw!r}")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise InvalidQuery(name, f"must be a number, got {raw!r}")
    if not math.isfinite(value):
        raise InvalidQuery(name, "must be finite")
    if not lo <= value <= hi:
        raise InvalidQuery(name, f"must be between {lo:g} and {hi:g}, got {value:g}")
    return value


def _parse_limit(params: Mapping[str, Any], max_results: int) -> int:
    raw = params.get("limit")
    if raw is None or raw == "":
        return max_results
    if isinstance(raw, bool):
        raise InvalidQuery("limit", f"must be a positive integer, got {raw!r}")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise InvalidQuery("limit", f"must be a positive integer, got {raw!r}")
    if value < 1:
        raise InvalidQuery("limit", f"must be a positive integer, got {value}")
    return min(value, max_results)


def parse_query(params: Mapping[str, Any], max_results: int = config.MAX_QUERY_RESULTS) -> QueryParams:
    """
    Parses raw request parameters (strings or numbers) into QueryParams.

    `viewport` is accepted as an alias of `bbox`. A reversed east/west pair
    is swapped; north below south is rejected. `limit` defaults to and is
    capped at max_results.
    """
    raw_kind = params.get("kind")
    if raw_kind is None or raw_kind == "":
        raise InvalidQuery("kind", "is required")
    kind = KIND_ALIASES.get(str(raw_kind).lower(), str(raw_kind).lower())
    if kind not in ALLOWED_KEYS:
        raise InvalidQuery("kind", f"unknown query kind {raw_kind!r}")

    for key in params:
        if key not in ALLOWED_KEYS[kind] and key not in PASSTHROUGH_KEYS:
            raise InvalidQuery(key, f"not a parameter of {kind} queries")

    limit = _parse_limit(params, max_results)

    if kind == KIND_ALL:
        return QueryParams(kind=kind, limit=limit)

    if kind == KIND_BBOX:
        north = _parse_float(params, "north", -90.0, 90.0)
        south = _parse_float(params, "south", -90.0, 90.0)
        east = _parse_float(params, "east", -180.0, 180.0)
        west = _parse_float(params, "west", -180.0, 180.0)
        if north < south:
            raise InvalidQuery("north", f"must be >= south ({north:g} < {south:g})")
        if east < west:
            east, west = west, east
        return QueryParams(kind=kind, limit=limit, north=north, south=south, east=east, west=west)

    lat = _parse_float(params, "lat", -90.0, 90.0)
    lng = _parse_float(params, "lng", -180.0, 180.0)
    radius = _parse_float(params, "radiusMeters")
    if radius <= 0:
        raise InvalidQuery("radiusMeters", f"must be greater than 0, got {radius:g}")
    return QueryParams(kind=kind, limit=limit, lat=lat, lng=lng, radius_meters=radius)


class QueryEngine:
    def __init__(self, db_ops: DBOperations, max_results: int = config.MAX_QUERY_RESULTS):
        self.db = db_ops
        self.max_results = max_results
        self._handlers: Dict[str, Callable[[QueryParams], List[PhotoRecord]]] = {
            KIND_ALL: lambda q: self.db.scan_all(q.limit),
            KIND_BBOX: lambda q: self.db.scan_by_bounds(q.north, q.south, q.east, q.west, q.limit),
            KIND_RADIUS: lambda q: self.db.scan_by_radius(q.lat, q.lng, q.radius_meters, q.limit),
        }

    def query(self, params: Mapping[str, Any]) -> List[PhotoRecord]:
        return self.execute(parse_query(params, self.max_results))

    def execute(self, qp: QueryParams) -> List[PhotoRecord]:
        return self._handlers[qp.kind](qp)


def cache_key(qp: QueryParams, precision: int = config.CACHE_KEY_PRECISION) -> str:
    """
    Deterministic key from kind + rounded parameters + limit, so that
    near-identical floating point queries share one entry.
    """
    def fmt(v: Optional[float]) -> str:
        # + 0.0 folds -0.0 into 0.0
        return f"{round(v, precision) + 0.0:.{precision}f}"

    if qp.kind == KIND_ALL:
        return f"all:{qp.limit}"
    if qp.kind == KIND_BBOX:
        return f"bbox:{fmt(qp.north)}:{fmt(qp.south)}:{fmt(qp.east)}:{fmt(qp.west)}:{qp.limit}"
    return f"radius:{fmt(qp.lat)}:{fmt(qp.lng)}:{fmt(qp.radius_meters)}:{qp.limit}"
