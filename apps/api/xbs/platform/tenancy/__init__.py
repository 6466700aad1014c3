from xbs.platform.tenancy.context import TenantScope
from xbs.platform.tenancy.repository import BaseRepository, Page, clamp_limit

__all__ = ["TenantScope", "BaseRepository", "Page", "clamp_limit"]
