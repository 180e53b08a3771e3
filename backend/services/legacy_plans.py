"""Legacy plan keys -> service selections.

Older intake forms stored a single plan string ("launch", "launch-traffic",
"full-funnel") instead of per-service flags. Those documents still exist, so
intake parsing translates them here. Nothing else should read plan keys.

Tables are versioned so a future rename of plans does not silently change
what an old record meant.
"""
import logging
from typing import Dict, Optional, Tuple

from services.service_catalog import (
    DEFAULT_CATALOG,
    ServiceCatalog,
    ServiceSelection,
    normalise_selection,
)

logger = logging.getLogger(__name__)

CURRENT_LEGACY_VERSION = "v1"

LEGACY_PLAN_TRANSLATIONS: Dict[str, Dict[str, Tuple[str, ...]]] = {
    "v1": {
        "launch": ("website",),
        "launch-traffic": ("website", "ads"),
        "full-funnel": ("website", "ads", "voice"),
    },
}


def is_legacy_plan_key(value, version: str = CURRENT_LEGACY_VERSION) -> bool:
    return isinstance(value, str) and value.strip().lower() in LEGACY_PLAN_TRANSLATIONS.get(version, {})


def selection_from_legacy_plan(
    plan_key: Optional[str],
    catalog: ServiceCatalog = DEFAULT_CATALOG,
    version: str = CURRENT_LEGACY_VERSION,
) -> ServiceSelection:
    """Translate a legacy plan key. Unknown keys map to an empty selection."""
    table = LEGACY_PLAN_TRANSLATIONS.get(version)
    if table is None:
        raise ValueError(f"Unknown legacy plan table version: {version}")
    keys = table.get((plan_key or "").strip().lower())
    if keys is None:
        logger.warning(f"Unrecognised legacy plan key: {plan_key!r}")
        keys = ()
    return normalise_selection(list(keys), catalog)
