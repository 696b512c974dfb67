"""
Billing analysis for virtual machine reservation recommendations.

Works on Azure Cost Management usage exports (EA or MCA schema). Pay-as-you-go
VM hours are grouped per (VM size, region) and day; the number of instances
running steadily over the lookback window is the reservation quantity that
would be fully utilized.
"""

import csv
import json
import logging
import math
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any

from azops.exceptions import CsvFormatError, InputFileError

logger = logging.getLogger(__name__)

HOURS_PER_MONTH = 730
VM_METER_CATEGORY = "virtual machines"

# Canonical field -> accepted header names (compared lower-cased)
COLUMN_ALIASES = {
    "date": ("date", "usagedate", "usagedatetime"),
    "meter_category": ("metercategory",),
    "meter_subcategory": ("metersubcategory",),
    "meter_name": ("metername",),
    "location": ("resourcelocation", "location", "resourcelocationnormalized"),
    "quantity": ("quantity", "usagequantity", "consumedquantity"),
    "unit": ("unitofmeasure",),
    "cost": ("costinbillingcurrency", "cost", "pretaxcost", "extendedcost"),
    "resource_id": ("resourceid", "instanceid", "instancename"),
    "additional_info": ("additionalinfo",),
    "pricing_model": ("pricingmodel",),
    "charge_type": ("chargetype",),
}
REQUIRED_FIELDS = ("date", "meter_category", "location", "quantity", "cost")

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%SZ", "%Y%m%d")

UNIT_RE = re.compile(r"^\s*(\d+)?\s*hours?\s*$", re.IGNORECASE)


@dataclass
class UsageRecord:
    day: date
    size: str
    region: str
    hours: float
    cost: float
    resource_id: str = ""


@dataclass
class Recommendation:
    size: str
    region: str
    quantity: int
    days_observed: int
    avg_instances: float
    peak_instances: float
    utilization: float
    hourly_rate: float
    monthly_on_demand_cost: float
    monthly_savings_1y: float
    monthly_savings_3y: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": self.size,
            "region": self.region,
            "quantity": self.quantity,
            "days_observed": self.days_observed,
            "avg_instances": round(self.avg_instances, 2),
            "peak_instances": round(self.peak_instances, 2),
            "utilization": round(self.utilization, 4),
            "hourly_rate": round(self.hourly_rate, 4),
            "monthly_on_demand_cost": round(self.monthly_on_demand_cost, 2),
            "monthly_savings_1y": round(self.monthly_savings_1y, 2),
            "monthly_savings_3y": round(self.monthly_savings_3y, 2),
        }


def parse_date(value: str) -> date:
    value = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        raise ValueError(f"Unrecognized date: {value}") from None


def unit_multiplier(unit: str) -> float | None:
    """``"10 Hours"`` -> 10, ``"1 Hour"`` -> 1; non-hour units give None."""
    match = UNIT_RE.match(unit or "")
    if not match:
        return None
    return float(match.group(1) or 1)


def normalize_region(region: str) -> str:
    return re.sub(r"\s+", "", region or "").lower()


def vm_size(additional_info: str, fallback: str) -> str:
    if additional_info:
        try:
            info = json.loads(additional_info)
        except json.JSONDecodeError:
            info = {}
        if isinstance(info, dict):
            for key in ("ServiceType", "VMSize", "vmSize"):
                if info.get(key):
                    return str(info[key]).strip()
    return fallback.strip() or "unknown"


def _to_float(value: str) -> float:
    value = (value or "").strip().replace(",", "")
    return float(value) if value else 0.0


def _resolve_columns(headers: list[str], path: Path) -> dict[str, str]:
    lowered = {h.strip().lower(): h for h in headers if h}
    columns = {}
    for canonical, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in lowered:
                columns[canonical] = lowered[alias]
                break

    missing = [f for f in REQUIRED_FIELDS if f not in columns]
    if missing:
        raise CsvFormatError(
            str(path), f"not a usage export, missing column(s): {', '.join(missing)}"
        )
    return columns


def load_usage(path: str | Path) -> list[UsageRecord]:
    """
    Read pay-as-you-go virtual machine hours from a usage export.

    Rows for other services, non-hour units, reservation/spot/savings plan
    pricing and non-usage charges are skipped.
    """
    p = Path(path)
    if not p.is_file():
        raise InputFileError(str(p))

    records = []
    skipped = 0
    with open(p, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        if not reader.fieldnames:
            raise CsvFormatError(str(p), "file is empty or has no header row")
        cols = _resolve_columns(reader.fieldnames, p)

        def get(row: dict, field_name: str) -> str:
            column = cols.get(field_name)
            return (row.get(column) or "").strip() if column else ""

        for row in reader:
            if get(row, "meter_category").lower() != VM_METER_CATEGORY:
                continue

            pricing = get(row, "pricing_model").lower().replace("-", "").replace(" ", "")
            charge = get(row, "charge_type").lower()
            if pricing not in ("", "ondemand", "payasyougo") or charge not in ("", "usage"):
                skipped += 1
                continue

            multiplier = unit_multiplier(get(row, "unit") or "1 Hour")
            if multiplier is None:
                skipped += 1
                continue

            try:
                records.append(
                    UsageRecord(
                        day=parse_date(get(row, "date")),
                        size=vm_size(
                            get(row, "additional_info"),
                            get(row, "meter_name") or get(row, "meter_subcategory"),
                        ),
                        region=normalize_region(get(row, "location")),
                        hours=_to_float(get(row, "quantity")) * multiplier,
                        cost=_to_float(get(row, "cost")),
                        resource_id=get(row, "resource_id").lower(),
                    )
                )
            except ValueError as e:
                skipped += 1
                logger.warning(f"{p.name} line {reader.line_num}: {e}")

    logger.info(f"{p.name}: {len(records)} VM usage rows loaded, {skipped} skipped")
    return records


def percentile(sorted_values: list[float], fraction: float) -> float:
    """Linear-interpolated percentile of an ascending list (fraction 0..1)."""
    if not sorted_values:
        return 0.0
    position = fraction * (len(sorted_values) - 1)
    lower = math.floor(position)
    upper = math.ceil(position)
    if lower == upper:
        return sorted_values[lower]
    weight = position - lower
    return sorted_values[lower] * (1 - weight) + sorted_values[upper] * weight


def recommend_reservations(
    records: list[UsageRecord],
    lookback_days: int = 30,
    coverage: float = 0.0,
    min_hours_per_day: float = 0.0,
    discounts: dict[str, float] | None = None,
) -> list[Recommendation]:
    """
    Recommend reservation quantities per (VM size, region).

    Args:
        records: VM usage from :func:`load_usage`
        lookback_days: Days, ending on the latest usage date, to analyze
        coverage: Which daily instance count to reserve; 0 reserves
            the minimum (instances that ran every day), 0.5 the median
        min_hours_per_day: Ignore groups averaging fewer hours per day
        discounts: Reservation discount per term, e.g. ``{"1y": 0.4, "3y": 0.6}``

    Returns:
        Recommendations with a quantity of at least 1, largest savings first
    """
    if not records:
        return []
    if lookback_days < 1:
        raise ValueError("lookback_days must be at least 1")
    if not 0.0 <= coverage <= 1.0:
        raise ValueError("coverage must be between 0 and 1")

    discounts = discounts or {"1y": 0.40, "3y": 0.60}
    end = max(r.day for r in records)
    start = end - timedelta(days=lookback_days - 1)
    window = [start + timedelta(days=i) for i in range(lookback_days)]

    hours: dict[tuple[str, str], dict[date, float]] = defaultdict(lambda: defaultdict(float))
    costs: dict[tuple[str, str], float] = defaultdict(float)
    for record in records:
        if start <= record.day <= end:
            key = (record.size, record.region)
            hours[key][record.day] += record.hours
            costs[key] += record.cost

    recommendations = []
    for (size, region), daily in hours.items():
        total_hours = sum(daily.values())
        if total_hours <= 0 or total_hours / lookback_days < min_hours_per_day:
            continue

        instances = sorted(daily.get(day, 0.0) / 24 for day in window)
        quantity = math.floor(percentile(instances, coverage) + 1e-9)
        if quantity < 1:
            continue

        rate = costs[(size, region)] / total_hours
        covered_hours = sum(min(n, quantity) * 24 for n in instances)
        monthly_cost = quantity * HOURS_PER_MONTH * rate

        recommendations.append(
            Recommendation(
                size=size,
                region=region,
                quantity=quantity,
                days_observed=sum(1 for day in window if daily.get(day)),
                avg_instances=sum(instances) / len(instances),
                peak_instances=instances[-1],
                utilization=covered_hours / (quantity * 24 * lookback_days),
                hourly_rate=rate,
                monthly_on_demand_cost=monthly_cost,
                monthly_savings_1y=monthly_cost * discounts.get("1y", 0.0),
                monthly_savings_3y=monthly_cost * discounts.get("3y", 0.0),
            )
        )

    recommendations.sort(key=lambda r: (-r.monthly_savings_3y, r.size, r.region))
    return recommendations
