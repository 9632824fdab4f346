"""Classify a fresh vendor scrape against the rows already stored for that vendor."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from vendorsync.models import VendorStatus
from vendorsync.pricing import MarkupType
from vendorsync.schemas import VendorVehicle


@dataclass
class PersistedVehicle:
    """Plain snapshot of a stored vendor vehicle."""
    id: int
    vin: Optional[str]
    stock_number: Optional[str]
    price: int = 0
    odometer: int = 0
    vendor_status: VendorStatus = VendorStatus.ACTIVE
    is_sold: bool = False
    images: List[str] = field(default_factory=list)
    price_markup_type: Optional[MarkupType] = MarkupType.VENDOR_DEFAULT
    price_markup_value: Optional[float] = None

    @classmethod
    def from_row(cls, row) -> "PersistedVehicle":
        return cls(
            id=row.id,
            vin=row.vin,
            stock_number=row.vendor_stock_number or row.stock_number,
            price=row.price or 0,
            odometer=row.odometer or 0,
            vendor_status=row.vendor_status or VendorStatus.ACTIVE,
            is_sold=bool(row.is_sold),
            images=list(row.images or []),
            price_markup_type=row.price_markup_type,
            price_markup_value=row.price_markup_value,
        )


Pair = Tuple[VendorVehicle, PersistedVehicle]


@dataclass
class InventoryDiff:
    new: List[VendorVehicle] = field(default_factory=list)
    updated: List[Pair] = field(default_factory=list)
    unchanged: List[Pair] = field(default_factory=list)
    unlisted: List[PersistedVehicle] = field(default_factory=list)
    reactivated: List[PersistedVehicle] = field(default_factory=list)
    duplicates: List[VendorVehicle] = field(default_factory=list)


def _find_match(
    vehicle: VendorVehicle,
    by_vin: Dict[str, PersistedVehicle],
    by_stock: Dict[str, PersistedVehicle],
) -> Optional[PersistedVehicle]:
    if vehicle.vin and vehicle.vin in by_vin:
        return by_vin[vehicle.vin]
    if not vehicle.stock_number:
        return None
    candidate = by_stock.get(vehicle.stock_number)
    # Stock numbers only decide when one side has no VIN
    if candidate and vehicle.vin and candidate.vin and candidate.vin != vehicle.vin:
        return None
    return candidate


def diff_inventory(scraped: List[VendorVehicle], persisted: List[PersistedVehicle]) -> InventoryDiff:
    """
    Classify each scraped vehicle as new, updated or unchanged.

    Identity is VIN equality when both sides carry a VIN, else stock-number
    equality. Only price and odometer differences make a match ``updated``.
    Active, unsold rows that nothing matched come back as ``unlisted``;
    matched rows that were unlisted are also reported in ``reactivated``.
    A scraped vehicle repeating an identity seen earlier in the same run
    is reported in ``duplicates`` and otherwise ignored.
    """
    diff = InventoryDiff()
    by_vin = {row.vin: row for row in persisted if row.vin}
    by_stock = {row.stock_number: row for row in persisted if row.stock_number}

    matched_ids: Set[int] = set()
    seen_keys: Set[Tuple[str, str]] = set()

    for vehicle in scraped:
        keys = {("vin", vehicle.vin)} if vehicle.vin else set()
        if vehicle.stock_number:
            keys.add(("stock", vehicle.stock_number))
        if keys & seen_keys:
            diff.duplicates.append(vehicle)
            continue

        row = _find_match(vehicle, by_vin, by_stock)
        if row is not None and row.id in matched_ids:
            diff.duplicates.append(vehicle)
            continue
        seen_keys.update(keys)

        if row is None:
            diff.new.append(vehicle)
            continue

        matched_ids.add(row.id)
        if row.vendor_status == VendorStatus.UNLISTED:
            diff.reactivated.append(row)
        if vehicle.price != row.price or vehicle.odometer != row.odometer:
            diff.updated.append((vehicle, row))
        else:
            diff.unchanged.append((vehicle, row))

    diff.unlisted = [
        row for row in persisted
        if row.id not in matched_ids
        and row.vendor_status == VendorStatus.ACTIVE
        and not row.is_sold
    ]
    return diff
