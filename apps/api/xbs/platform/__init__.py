from xbs.platform.tenancy import BaseRepository, Page, TenantScope, clamp_limit

__all__ = ["TenantScope", "BaseRepository", "Page", "clamp_limit"]
