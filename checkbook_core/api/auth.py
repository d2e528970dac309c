"""
Caller identity dependencies and the checkbook system container

Users authenticate with an external session layer which forwards the caller
id in ``X-User-Id`` and, for regional users, the region in ``X-User-Region``.
"""

from typing import Optional
from fastapi import Depends, Header, HTTPException

from ..storage import StorageInterface, create_storage
from ..audit import AuditTrail, NullAuditSink
from ..banks import BankRegistry
from ..checkbooks import CheckbookRegistry
from ..allocator import ReferenceAllocator
from ..capacity import CapacityGuard
from ..checks import CheckLifecycle
from ..regions import RegionRegistry, RegionView
from ..reporting import CheckReporting
from ..suppliers import SupplierRegistry
from ..errors import CheckbookError
from ..models import Region
from ..config import CheckbookConfig, get_config


class CheckSystem:
    """Checkbook engine with all components initialized"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        config: Optional[CheckbookConfig] = None
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(
            self.config.database_url, sqlite_timeout=self.config.sqlite_timeout
        )

        # Audit sink
        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_logging else None
        self.audit_sink = self.audit_trail or NullAuditSink()

        # Core components
        self.checkbooks = CheckbookRegistry(self.storage, self.audit_sink)
        self.banks = BankRegistry(self.storage, self.audit_sink, self.checkbooks)
        self.allocator = ReferenceAllocator(self.storage)
        self.capacity_guard = CapacityGuard(
            self.storage,
            max_retries=self.config.reservation_max_retries,
            retry_backoff_ms=self.config.reservation_retry_backoff_ms
        )
        self.checks = CheckLifecycle(self.storage, self.allocator, self.capacity_guard, self.audit_sink)
        self.suppliers = SupplierRegistry(self.storage, self.audit_sink)

        # Regional view and reporting
        self.regions = RegionRegistry(self.storage, self.audit_sink)
        self.region_view = RegionView(self.storage)
        self.reporting = CheckReporting(self.storage, self.audit_sink)

        if self.config.seed_default_regions:
            self.regions.seed_defaults()

    def close(self) -> None:
        self.storage.close()


# Global system instance, built on first use
_check_system: Optional[CheckSystem] = None


def get_check_system() -> CheckSystem:
    global _check_system
    if _check_system is None:
        _check_system = CheckSystem()
    return _check_system


def get_actor_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    """Caller id forwarded by the session layer"""
    return x_user_id


def get_user_region(
    x_user_region: Optional[str] = Header(None),
    system: CheckSystem = Depends(get_check_system)
) -> Optional[Region]:
    """Region of a regional caller, None for unrestricted callers"""
    if not x_user_region:
        return None
    region = system.regions.get_by_name(x_user_region)
    if region is None:
        raise HTTPException(status_code=403, detail=f"Unknown region {x_user_region}")
    return region


def http_error(e: CheckbookError) -> HTTPException:
    """Map a domain error to its HTTP response"""
    return HTTPException(status_code=e.status_code, detail=e.to_dict())
