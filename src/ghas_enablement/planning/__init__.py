"""License-aware enablement planning: resolve, route, analyze, plan, execute."""
