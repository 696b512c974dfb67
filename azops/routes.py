"""
Route table management.

Routes are validated locally (CIDR form, next hop consistency, duplicates,
table size) before anything is sent to Azure. ``lookup`` answers which user
route wins for a destination address using longest-prefix match.
"""

import csv
import ipaddress
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from azops.exceptions import InputFileError, RouteValidationError
from azops.util.cidr import check_prefix, find_overlaps, longest_prefix_match
from azops.util.retry import RetryStrategy, is_retryable_error, retry_with_backoff

logger = logging.getLogger(__name__)

MAX_ROUTES_PER_TABLE = 400

NEXT_HOP_TYPES = {
    "virtualnetworkgateway": "VirtualNetworkGateway",
    "vnetlocal": "VnetLocal",
    "internet": "Internet",
    "virtualappliance": "VirtualAppliance",
    "none": "None",
}

SERVICE_TAG_RE = re.compile(r"^[A-Za-z][A-Za-z0-9]*(\.[A-Za-z0-9]+)*$")


@dataclass
class RouteSpec:
    name: str
    address_prefix: str
    next_hop_type: str
    next_hop_ip: str | None = None

    def same_target(self, other: "RouteSpec") -> bool:
        return (
            self.address_prefix.lower() == other.address_prefix.lower()
            and self.next_hop_type == other.next_hop_type
            and (self.next_hop_ip or None) == (other.next_hop_ip or None)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "address_prefix": self.address_prefix,
            "next_hop_type": self.next_hop_type,
            "next_hop_ip": self.next_hop_ip or "",
        }


@dataclass
class RouteChange:
    action: str
    name: str
    desired: RouteSpec | None = None
    current: RouteSpec | None = None
    status: str = "planned"
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        route = self.desired or self.current
        return {
            "action": self.action,
            "name": self.name,
            "address_prefix": route.address_prefix if route else "",
            "next_hop": _next_hop_label(route) if route else "",
            "status": self.status,
            "error": self.error,
        }


@dataclass
class RoutePlan:
    changes: list[RouteChange] = field(default_factory=list)

    @property
    def pending(self) -> list[RouteChange]:
        return [c for c in self.changes if c.action != "unchanged"]

    @property
    def failed(self) -> list[RouteChange]:
        return [c for c in self.changes if c.status == "failed"]


def _next_hop_label(route: RouteSpec) -> str:
    if route.next_hop_ip:
        return f"{route.next_hop_type} ({route.next_hop_ip})"
    return route.next_hop_type


def normalize_next_hop_type(value: str) -> str:
    key = (value or "").replace(" ", "").replace("_", "").lower()
    if key not in NEXT_HOP_TYPES:
        raise ValueError(
            f"Invalid next hop type '{value}'. Must be one of: {', '.join(NEXT_HOP_TYPES.values())}"
        )
    return NEXT_HOP_TYPES[key]


def route_name_for(prefix: str) -> str:
    """Derive a route name from a prefix: ``10.1.0.0/16`` -> ``r-10-1-0-0-16``."""
    return "r-" + re.sub(r"[^A-Za-z0-9]+", "-", prefix.strip()).strip("-").lower()


def is_service_tag(prefix: str) -> bool:
    """Azure accepts service tags (``AzureCloud``, ``Storage.WestEurope``) as prefixes."""
    if "/" in prefix:
        return False
    try:
        ipaddress.ip_address(prefix)
        return False
    except ValueError:
        return bool(SERVICE_TAG_RE.match(prefix))


def make_route(
    address_prefix: str,
    next_hop_type: str,
    next_hop_ip: str | None = None,
    name: str | None = None,
) -> RouteSpec:
    prefix = address_prefix.strip()
    return RouteSpec(
        name=(name or "").strip() or route_name_for(prefix),
        address_prefix=prefix,
        next_hop_type=normalize_next_hop_type(next_hop_type),
        next_hop_ip=(next_hop_ip or "").strip() or None,
    )


def parse_route_csv(path: str | Path) -> list[RouteSpec]:
    """
    Read routes from CSV with ``address_prefix`` (or ``prefix``), ``next_hop_type``
    and optional ``name`` and ``next_hop_ip`` columns.
    """
    p = Path(path)
    if not p.is_file():
        raise InputFileError(str(p))

    routes = []
    errors = []
    with open(p, newline="") as f:
        for row in csv.DictReader(f):
            row = {(k or "").strip().lower(): (v or "").strip() for k, v in row.items()}
            prefix = row.get("address_prefix") or row.get("prefix")
            if not prefix:
                continue
            try:
                routes.append(
                    make_route(
                        prefix,
                        row.get("next_hop_type", ""),
                        row.get("next_hop_ip") or row.get("next_hop_ip_address"),
                        row.get("name"),
                    )
                )
            except ValueError as e:
                errors.append(f"{prefix}: {e}")

    if errors:
        raise RouteValidationError(errors)
    return routes


def validate_routes(routes: list[RouteSpec]) -> list[str]:
    """
    Check a full set of routes for one table.

    Returns:
        List of error messages (empty when valid)
    """
    errors = []
    seen_names: dict[str, str] = {}
    seen_prefixes: dict[str, str] = {}

    for route in routes:
        if not is_service_tag(route.address_prefix):
            check = check_prefix(route.address_prefix)
            if not check.valid:
                errors.append(f"{route.name}: {check.error}")
                normalized = None
            else:
                normalized = check.network.with_prefixlen
        else:
            normalized = route.address_prefix.lower()

        if route.next_hop_type == "VirtualAppliance":
            if not route.next_hop_ip:
                errors.append(f"{route.name}: VirtualAppliance next hop requires a next hop IP")
            else:
                try:
                    ipaddress.ip_address(route.next_hop_ip)
                except ValueError:
                    errors.append(f"{route.name}: invalid next hop IP '{route.next_hop_ip}'")
        elif route.next_hop_ip:
            errors.append(
                f"{route.name}: next hop IP is only allowed for VirtualAppliance "
                f"(got {route.next_hop_type})"
            )

        key = route.name.lower()
        if key in seen_names:
            errors.append(f"{route.name}: duplicate route name")
        seen_names[key] = route.address_prefix

        if normalized is not None:
            if normalized in seen_prefixes:
                errors.append(
                    f"{route.name}: prefix {route.address_prefix} duplicates route "
                    f"{seen_prefixes[normalized]}"
                )
            else:
                seen_prefixes[normalized] = route.name

    if len(routes) > MAX_ROUTES_PER_TABLE:
        errors.append(
            f"{len(routes)} routes exceeds the limit of {MAX_ROUTES_PER_TABLE} per route table"
        )

    return errors


def overlapping_routes(routes: list[RouteSpec]) -> list[tuple[RouteSpec, RouteSpec]]:
    """Pairs of distinct-prefix routes whose ranges overlap (the longer prefix wins)."""
    by_prefix = {s.address_prefix: s for s in routes}
    return [
        (by_prefix[left], by_prefix[right])
        for left, right in find_overlaps([s.address_prefix for s in routes])
        if left != right
    ]


def lookup(address: str, routes: list[RouteSpec]) -> RouteSpec | None:
    """
    Return the user route that carries traffic to ``address``, or None when
    only system routes apply. Service-tag routes are not considered.
    """
    winner = longest_prefix_match(address, [r.address_prefix for r in routes])
    if winner is None:
        return None
    return next(r for r in routes if r.address_prefix == winner)


def plan_routes(
    desired: list[RouteSpec], current: list[RouteSpec], prune: bool = False
) -> RoutePlan:
    """
    Compare desired routes with the table's current routes, keyed by name.

    Raises:
        RouteValidationError: If the desired routes are invalid, or a new route
            would duplicate the prefix of an existing route that is kept
    """
    errors = validate_routes(desired)
    if errors:
        raise RouteValidationError(errors)

    current_by_name = {r.name.lower(): r for r in current}
    desired_names = {r.name.lower() for r in desired}
    kept = [r for r in current if r.name.lower() not in desired_names and not prune]

    changes = []
    for route in desired:
        existing = current_by_name.get(route.name.lower())
        if existing is None:
            clash = next(
                (r for r in kept if r.address_prefix.lower() == route.address_prefix.lower()), None
            )
            if clash is not None:
                errors.append(
                    f"{route.name}: prefix {route.address_prefix} is already routed by "
                    f"'{clash.name}' (use --prune to replace it)"
                )
                continue
            changes.append(RouteChange("create", route.name, desired=route))
        elif existing.same_target(route):
            changes.append(RouteChange("unchanged", route.name, desired=route, current=existing))
        else:
            changes.append(RouteChange("update", route.name, desired=route, current=existing))

    if len(kept) + len(desired) > MAX_ROUTES_PER_TABLE:
        errors.append(
            f"{len(kept)} kept and {len(desired)} desired routes exceed the limit of "
            f"{MAX_ROUTES_PER_TABLE} per route table"
        )

    if errors:
        raise RouteValidationError(errors)

    if prune:
        for route in current:
            if route.name.lower() not in desired_names:
                changes.append(RouteChange("delete", route.name, current=route))

    order = {"delete": 0, "update": 1, "create": 2, "unchanged": 3}
    changes.sort(key=lambda c: (order[c.action], c.name.lower()))
    return RoutePlan(changes)


class RouteTableManager:
    """Reads and changes the routes of one route table."""

    def __init__(self, network_client, resource_group: str, route_table: str):
        self.client = network_client
        self.resource_group = resource_group
        self.route_table = route_table

    @retry_with_backoff(**RetryStrategy.apply("ARM_API"), should_retry=is_retryable_error)
    def list_routes(self) -> list[RouteSpec]:
        routes = list(
            self.client.routes.list(
                resource_group_name=self.resource_group, route_table_name=self.route_table
            )
        )
        return [
            RouteSpec(
                name=r.name,
                address_prefix=r.address_prefix,
                next_hop_type=getattr(r.next_hop_type, "value", r.next_hop_type),
                next_hop_ip=r.next_hop_ip_address,
            )
            for r in routes
        ]

    def add_route(self, route: RouteSpec) -> None:
        errors = validate_routes([route])
        if errors:
            raise RouteValidationError(errors)

        from azure.mgmt.network.models import Route

        parameters = Route(
            address_prefix=route.address_prefix,
            next_hop_type=route.next_hop_type,
            next_hop_ip_address=route.next_hop_ip,
        )
        poller = self.client.routes.begin_create_or_update(
            resource_group_name=self.resource_group,
            route_table_name=self.route_table,
            route_name=route.name,
            route_parameters=parameters,
        )
        poller.result()
        logger.info(f"Route {route.name} ({route.address_prefix}) written to {self.route_table}")

    def remove_route(self, name: str) -> None:
        poller = self.client.routes.begin_delete(
            resource_group_name=self.resource_group,
            route_table_name=self.route_table,
            route_name=name,
        )
        poller.result()
        logger.info(f"Route {name} removed from {self.route_table}")

    def plan(self, desired: list[RouteSpec], prune: bool = False) -> RoutePlan:
        return plan_routes(desired, self.list_routes(), prune)

    def apply(self, plan: RoutePlan) -> RoutePlan:
        """Apply pending changes in plan order, recording per-change failures."""
        for change in plan.pending:
            try:
                if change.action == "delete":
                    self.remove_route(change.name)
                else:
                    self.add_route(change.desired)
                change.status = "applied"
            except Exception as e:
                change.status = "failed"
                change.error = str(e)
                logger.error(f"{change.action} route {change.name} failed: {e}")
        return plan
