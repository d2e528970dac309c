"""
Regions Module

Regions are named sets of cities. A regional user only sees checks issued
in the cities of their region; RegionView applies that filter to check
lists and statistics and never writes anything.
"""

from decimal import Decimal
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import uuid

from .storage import StorageInterface, DuplicateKeyError
from .audit import AuditSink, AuditAction, notify
from .errors import ValidationError, NotFoundError, ConflictError
from .models import Check, Region, CHECKS_TABLE, REGIONS_TABLE, REGION_NAMES_TABLE
from .logging_config import get_logger, log_action


DEFAULT_REGIONS: Dict[str, List[str]] = {
    "nord": ["Alger", "Tipaza", "Boumerdes", "Blida", "Ain Defla"],
    "sud": ["Ouargla", "Ghardaia", "Tamanrasset", "Adrar", "Illizi"],
    "est": ["Constantine", "Annaba", "Sétif", "Batna", "Guelma"],
    "ouest": ["Oran", "Tlemcen", "Sidi Bel Abbès", "Mostaganem", "Mascara"],
}

logger = get_logger("checkbook.regions")


def _normalize_name(name: Optional[str]) -> str:
    value = (name or "").strip().lower()
    if not value:
        raise ValidationError("Region name must not be blank")
    return value


def _normalize_cities(cities: Optional[List[str]]) -> List[str]:
    result = []
    for city in cities or []:
        city = (city or "").strip()
        if city and city not in result:
            result.append(city)
    return result


class RegionRegistry:
    """
    Manages regions and their city lists
    """

    def __init__(self, storage: StorageInterface, audit_sink: AuditSink):
        self.storage = storage
        self.audit_sink = audit_sink

    def create(self, name: str, cities: List[str], actor_id: Optional[str] = None) -> Region:
        """Create a region; names are unique and stored lower-cased"""
        name = _normalize_name(name)
        now = datetime.now(timezone.utc)
        region = Region(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            cities=_normalize_cities(cities)
        )

        with self.storage.atomic():
            self._reserve_name(name, region.id)
            self.storage.insert(REGIONS_TABLE, region.id, region.to_dict())

        log_action(logger, "info", f"Region {name} created",
                   user_id=actor_id, action="CREATE_REGION", resource=region.id)
        notify(self.audit_sink, actor_id, AuditAction.CREATE_REGION, "region", region.id,
               {"name": name, "cities": region.cities})
        return region

    def get(self, region_id: str) -> Optional[Region]:
        data = self.storage.load(REGIONS_TABLE, region_id)
        if data:
            return Region.from_dict(data)
        return None

    def _lock(self, region_id: str) -> Optional[Region]:
        data = self.storage.load_for_update(REGIONS_TABLE, region_id)
        if data:
            return Region.from_dict(data)
        return None

    def _reserve_name(self, name: str, region_id: str) -> None:
        try:
            self.storage.insert(REGION_NAMES_TABLE, name, {"region_id": region_id})
        except DuplicateKeyError:
            raise ConflictError(f"Region {name} already exists", {"name": name})

    def get_by_name(self, name: str) -> Optional[Region]:
        regions = self.storage.find(REGIONS_TABLE, {"name": (name or "").strip().lower()})
        if regions:
            return Region.from_dict(regions[0])
        return None

    def list(self) -> List[Region]:
        regions = [Region.from_dict(d) for d in self.storage.load_all(REGIONS_TABLE)]
        regions.sort(key=lambda r: r.name)
        return regions

    def update(
        self,
        region_id: str,
        name: Optional[str] = None,
        cities: Optional[List[str]] = None,
        actor_id: Optional[str] = None
    ) -> Region:
        """Rename a region and/or replace its city list"""
        with self.storage.atomic():
            region = self._lock(region_id)
            if region is None:
                raise NotFoundError("region", region_id)
            old_values = {"name": region.name, "cities": list(region.cities)}

            if name is not None:
                new_name = _normalize_name(name)
                if new_name != region.name:
                    self._reserve_name(new_name, region.id)
                    self.storage.delete(REGION_NAMES_TABLE, region.name)
                region.name = new_name
            if cities is not None:
                region.cities = _normalize_cities(cities)

            region.updated_at = datetime.now(timezone.utc)
            self.storage.save(REGIONS_TABLE, region.id, region.to_dict())

        log_action(logger, "info", f"Region {region.name} updated",
                   user_id=actor_id, action="UPDATE_REGION", resource=region.id)
        notify(self.audit_sink, actor_id, AuditAction.UPDATE_REGION, "region", region.id, {
            "old_values": old_values,
            "new_values": {"name": region.name, "cities": region.cities}
        })
        return region

    def delete(self, region_id: str, actor_id: Optional[str] = None) -> None:
        with self.storage.atomic():
            region = self._lock(region_id)
            if region is None:
                raise NotFoundError("region", region_id)
            self.storage.delete(REGIONS_TABLE, region_id)
            self.storage.delete(REGION_NAMES_TABLE, region.name)

        log_action(logger, "info", f"Region {region.name} deleted",
                   user_id=actor_id, action="DELETE_REGION", resource=region_id)
        notify(self.audit_sink, actor_id, AuditAction.DELETE_REGION, "region", region_id,
               {"name": region.name})

    def seed_defaults(self) -> List[Region]:
        """Create the default regions that do not exist yet"""
        created = []
        for name, cities in DEFAULT_REGIONS.items():
            if self.get_by_name(name) is None:
                created.append(self.create(name, cities, actor_id="system"))
        return created


class RegionView:
    """Read-only regional projection of checks"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    @staticmethod
    def filter_checks(checks: List[Check], region: Region) -> List[Check]:
        """Keep checks issued in one of the region's cities"""
        return [c for c in checks if region.contains_city(c.city)]

    def stats(self, region: Region, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Totals over every check of the region, whatever its status

        Returns:
            total_amount, total_count and monthly_count (checks created in
            the current calendar month, UTC)
        """
        now = now or datetime.now(timezone.utc)
        checks = self.filter_checks(
            [Check.from_dict(d) for d in self.storage.load_all(CHECKS_TABLE)],
            region
        )
        monthly = [
            c for c in checks
            if c.created_at.year == now.year and c.created_at.month == now.month
        ]
        return {
            "region": region.name,
            "total_amount": sum((c.amount for c in checks), Decimal("0")),
            "total_count": len(checks),
            "monthly_count": len(monthly)
        }
