"""License-aware GitHub Advanced Security enablement across GitHub instances."""

from .runner import main, plan_and_execute

__all__ = ["main", "plan_and_execute"]
