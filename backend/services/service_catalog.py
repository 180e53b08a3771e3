"""Service Catalog & Selection Engine.

The catalog is the single source of truth for launch package pricing:
- Which services can be sold (website, ads, voice)
- What each one costs at approval time
- The flat kickoff deposit and the full-bundle discount

Everything here is pure. A ServiceCatalog is an immutable value that gets
passed to whoever needs it, so tests and alternative storefronts can swap in
their own catalog without touching module state.

All money is integer cents. Divide by 100 only when rendering.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field

from services.errors import UnknownServiceError

ServiceSelection = Dict[str, bool]

SHARED_FIELD_SEPARATOR = " • "
TRUTHY_STRINGS = frozenset({"true", "1", "yes", "on", "y"})


@dataclass(frozen=True)
class ServiceDefinition:
    key: str
    name: str
    short_label: str
    tagline: str
    description: str
    proof: str
    bullets: Tuple[str, ...]
    due_at_approval_cents: int
    total_cents: int
    ongoing_note: Optional[str] = None


@dataclass(frozen=True)
class ServiceCatalog:
    services: Tuple[ServiceDefinition, ...]
    kickoff_deposit_cents: int = 9900
    bundle_discount_percent: int = 10
    bundle_label: str = "Full Funnel"
    _index: Dict[str, ServiceDefinition] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_index", {s.key: s for s in self.services})

    def keys(self) -> List[str]:
        return [s.key for s in self.services]

    def has(self, key: str) -> bool:
        return key in self._index

    def get(self, key: str) -> ServiceDefinition:
        return self._index[key]


DEFAULT_CATALOG = ServiceCatalog(
    services=(
        ServiceDefinition(
            key="website",
            name="Conversion Website",
            short_label="Website",
            tagline="Done-for-you conversion website",
            description=(
                "A high-converting page that syncs to your calendar and tees up "
                "future campaigns."
            ),
            proof="Clients launch in under two weeks with booking built in.",
            bullets=(
                "One-page funnel with inline booking and proof-driven copy.",
                "Roadmap the rollout on a quick kickoff call.",
                "Hosting, care and small edits handled for you.",
            ),
            due_at_approval_cents=40000,
            total_cents=49900,
            ongoing_note="$25/mo hosting & care after launch.",
        ),
        ServiceDefinition(
            key="ads",
            name="Google & Meta Ads",
            short_label="Ads",
            tagline="Search and social campaigns matched to your page",
            description=(
                "Paid search and social that capture intent the moment the page "
                "goes live."
            ),
            proof="Weekly trims and transparent cost-per-booked-call reporting.",
            bullets=(
                "Search + social campaigns matched to the on-page message.",
                "Weekly trims, reporting, and cost-per-booked-call metrics.",
            ),
            due_at_approval_cents=100100,
            total_cents=110000,
            ongoing_note="Management billed at 10% of ad spend.",
        ),
        ServiceDefinition(
            key="voice",
            name="AI Voice Receptionist",
            short_label="AI Voice",
            tagline="An AI receptionist that answers every lead",
            description=(
                "Qualifies callers, books appointments and warm-transfers during "
                "open hours."
            ),
            proof="Every missed call becomes a booked conversation.",
            bullets=(
                "Voice agent qualifies, books, and sends warm transfers after hours.",
                "Call summaries tie spend directly to revenue conversations.",
            ),
            due_at_approval_cents=140000,
            total_cents=149900,
            ongoing_note="Voice minutes from $99/mo, billed after launch.",
        ),
    ),
)

EMPTY_SELECTION_COPY = {
    "label": "Pick your services",
    "tagline": "Pick services to see your launch pricing",
    "description": "Choose a website, ads, AI voice, or all three to build your launch package.",
    "proof": "",
}


class ServiceSelectionSummary(BaseModel):
    label: str
    tagline: str
    description: str
    proof: str
    bullets: List[str] = Field(default_factory=list)
    ongoing_notes: List[str] = Field(default_factory=list)
    selected_keys: List[str] = Field(default_factory=list)
    deposit_cents: int = 0
    due_at_approval_cents: int = 0
    discount_cents: int = 0
    total_launch_cents: int = 0
    is_bundle: bool = False


def _is_truthy(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY_STRINGS
    return bool(value)


def empty_selection(catalog: ServiceCatalog = DEFAULT_CATALOG) -> ServiceSelection:
    return {key: False for key in catalog.keys()}


def normalise_selection(raw, catalog: ServiceCatalog = DEFAULT_CATALOG) -> ServiceSelection:
    """Coerce flags or a list of keys into a selection defined for every catalog key.

    Unknown keys are dropped silently; use validate_service_keys() where an
    unknown key must fail the call.
    """
    selection = empty_selection(catalog)
    if isinstance(raw, Mapping):
        for key, value in raw.items():
            if catalog.has(key):
                selection[key] = _is_truthy(value)
    elif isinstance(raw, (list, tuple, set, frozenset)):
        for key in raw:
            if isinstance(key, str) and catalog.has(key):
                selection[key] = True
    return selection


def validate_service_keys(keys: Iterable[str], catalog: ServiceCatalog = DEFAULT_CATALOG) -> List[str]:
    """Return the keys de-duplicated in catalog order; raise if any is unknown."""
    requested = list(keys or [])
    unknown = [k for k in requested if not isinstance(k, str) or not catalog.has(k)]
    if unknown:
        raise UnknownServiceError([str(k) for k in unknown])
    wanted = set(requested)
    return [k for k in catalog.keys() if k in wanted]


def selected_keys(selection: Mapping[str, bool], catalog: ServiceCatalog = DEFAULT_CATALOG) -> List[str]:
    return [k for k in catalog.keys() if selection.get(k)]


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def bundle_discount_cents(pre_discount_cents: int, catalog: ServiceCatalog = DEFAULT_CATALOG) -> int:
    discount = round_half_up(Decimal(pre_discount_cents) * Decimal(catalog.bundle_discount_percent) / Decimal(100))
    return min(discount, pre_discount_cents)


def _merge_unique(values: Iterable[str]) -> List[str]:
    seen = set()
    merged = []
    for value in values:
        text = (value or "").strip()
        if text and text not in seen:
            seen.add(text)
            merged.append(text)
    return merged


def _join_shared(values: Iterable[str]) -> str:
    return SHARED_FIELD_SEPARATOR.join(_merge_unique(values))


def describe_selection(
    selection: Mapping[str, bool],
    catalog: ServiceCatalog = DEFAULT_CATALOG,
) -> ServiceSelectionSummary:
    """Pricing and merged marketing copy for a selection."""
    keys = selected_keys(normalise_selection(selection, catalog), catalog)
    if not keys:
        return ServiceSelectionSummary(**EMPTY_SELECTION_COPY)

    chosen = [catalog.get(k) for k in keys]
    is_bundle = len(keys) == len(catalog.services)

    pre_discount = sum(s.due_at_approval_cents for s in chosen)
    discount = bundle_discount_cents(pre_discount, catalog) if is_bundle else 0
    due = pre_discount - discount
    deposit = catalog.kickoff_deposit_cents

    if is_bundle:
        label = catalog.bundle_label
    else:
        label = " + ".join(s.short_label for s in chosen)

    return ServiceSelectionSummary(
        label=label,
        tagline=_join_shared(s.tagline for s in chosen),
        description=_join_shared(s.description for s in chosen),
        proof=_join_shared(s.proof for s in chosen),
        bullets=_merge_unique(b for s in chosen for b in s.bullets),
        ongoing_notes=_merge_unique(s.ongoing_note for s in chosen),
        selected_keys=keys,
        deposit_cents=deposit,
        due_at_approval_cents=due,
        discount_cents=discount,
        total_launch_cents=deposit + due,
        is_bundle=is_bundle,
    )


def format_cents(cents: int, currency_symbol: str = "$") -> str:
    """Render integer cents as a currency string, e.g. 9900 -> "$99.00"."""
    sign = "-" if cents < 0 else ""
    whole, rem = divmod(abs(int(cents)), 100)
    return f"{sign}{currency_symbol}{whole:,}.{rem:02d}"
