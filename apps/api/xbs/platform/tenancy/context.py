from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class TenantScope:
    """Isolation boundary for every read and write: one application in one mode."""

    tenant_id: str
    test_mode: bool = False
    correlation_id: str | None = None

    @property
    def mode(self) -> str:
        return "test" if self.test_mode else "live"
