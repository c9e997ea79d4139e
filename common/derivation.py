"""Status, location, category and type derivation for equipment writes.

Every write path runs the candidate fields through :meth:`StateDerivationEngine.derive`
exactly once before the row is persisted. The engine resolves reference ids to
their display names through injected resolvers and then applies the status rules:

1. ``quantity == 0`` forces ``unavailable`` and nothing else is considered.
2. A ``fixed`` installation with installed units is ``in-use`` (unless in
   ``maintenance`` or ``unavailable``) and sits at its installation location.
3. The home storage location (``Lager`` by default, case-insensitive) forces
   ``available``.
4. Any other location moves the item to ``in-use`` unless it is pinned to
   ``maintenance``.
5. Without a location the status is left as supplied.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Protocol

from .errors import LookupFailed, LookupNotFound
from .models import EquipmentStatus, InstallationType

logger = logging.getLogger(__name__)

DEFAULT_HOME_LOCATION = "Lager"
DEFAULT_QUANTITY = 1

REFERENCE_ID_FIELDS = ("location_id", "category_id", "type_id", "installation_location_id")


class NameResolver(Protocol):
    """Resolves a reference id to the display name of the referenced row."""

    def resolve(self, ref_id: int) -> str:
        ...


# Named seams for the three lookups the engine needs.
LocationResolver = NameResolver
CategoryResolver = NameResolver
TypeResolver = NameResolver


class StatusRule(str, Enum):
    QUANTITY = "quantity"
    INSTALLATION = "installation"
    HOME_LOCATION = "home_location"
    LOCATION = "location"
    NONE = "none"


@dataclass(frozen=True)
class DerivedState:
    status: str
    quantity: int
    location: str
    location_id: Optional[int]
    category: str
    category_id: Optional[int]
    type: str
    type_id: Optional[int]
    installation_type: str = InstallationType.PORTABLE.value
    installation_quantity: int = 0
    installation_location: Optional[str] = None
    installation_location_id: Optional[int] = None
    status_rule: StatusRule = StatusRule.NONE

    def as_fields(self) -> dict[str, Any]:
        """Column values to write onto the equipment row."""

        fields = asdict(self)
        fields.pop("status_rule")
        return fields


def normalize_reference(value: Any) -> Optional[int]:
    """Map the ways a client can send a reference id onto ``int`` or ``None``.

    Empty strings clear the reference, numeric strings are accepted.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        return int(value)
    return int(value)


def _value(member: Any) -> Any:
    return member.value if isinstance(member, Enum) else member


def is_home_location(location: Optional[str], home_location_name: str = DEFAULT_HOME_LOCATION) -> bool:
    if not location:
        return False
    return location.strip().lower() == home_location_name.strip().lower()


class StateDerivationEngine:
    def __init__(
        self,
        location_resolver: Optional[LocationResolver] = None,
        category_resolver: Optional[CategoryResolver] = None,
        type_resolver: Optional[TypeResolver] = None,
        home_location_name: str = DEFAULT_HOME_LOCATION,
    ) -> None:
        self.location_resolver = location_resolver
        self.category_resolver = category_resolver
        self.type_resolver = type_resolver
        self.home_location_name = home_location_name

    def derive(self, current: Optional[Mapping[str, Any]], candidate: Mapping[str, Any]) -> DerivedState:
        """Compute the values to persist for ``current`` with ``candidate`` applied.

        ``current`` is ``None`` (or empty) on creation. Fields missing from
        ``candidate`` keep their current value; ``None`` or ``""`` for a reference
        id clears it, together with its name unless new text is supplied. A
        ``None`` status or quantity counts as missing. Lookup failures never
        raise: the previously known name is kept.
        """
        current = current or {}
        candidate = dict(candidate)
        for field in REFERENCE_ID_FIELDS:
            if field in candidate:
                candidate[field] = normalize_reference(candidate[field])

        def merged(field: str, default: Any = None) -> Any:
            if field in candidate:
                return candidate[field]
            return current.get(field, default)

        def supplied(field: str, default: Any) -> Any:
            for source in (candidate, current):
                if source.get(field) is not None:
                    return source[field]
            return default

        def reference_text(id_field: str, text_field: str) -> Optional[str]:
            if id_field in candidate and candidate[id_field] is None and not candidate.get(text_field):
                return ""
            return merged(text_field)

        location, location_id = self._resolve(
            "location", self.location_resolver, merged("location_id"), reference_text("location_id", "location")
        )
        category, category_id = self._resolve(
            "category", self.category_resolver, merged("category_id"), reference_text("category_id", "category")
        )
        type_name, type_id = self._resolve(
            "type", self.type_resolver, merged("type_id"), reference_text("type_id", "type")
        )
        installation_location, installation_location_id = self._resolve(
            "installation location",
            self.location_resolver,
            merged("installation_location_id"),
            reference_text("installation_location_id", "installation_location"),
        )

        quantity = supplied("quantity", DEFAULT_QUANTITY)
        status = _value(supplied("status", EquipmentStatus.AVAILABLE.value))
        installation_type = _value(supplied("installation_type", InstallationType.PORTABLE.value))
        installation_quantity = supplied("installation_quantity", 0)

        if (
            quantity != 0
            and installation_type == InstallationType.FIXED.value
            and installation_quantity > 0
            and installation_location
        ):
            location, location_id = installation_location, installation_location_id

        status, rule = self._derive_status(
            status, quantity, location, location_id, installation_type, installation_quantity
        )
        logger.debug(
            "Derived status=%s (rule=%s) location=%r location_id=%s quantity=%s",
            status,
            rule.value,
            location,
            location_id,
            quantity,
        )
        return DerivedState(
            status=status,
            quantity=quantity,
            location=location,
            location_id=location_id,
            category=category,
            category_id=category_id,
            type=type_name,
            type_id=type_id,
            installation_type=installation_type,
            installation_quantity=installation_quantity,
            installation_location=installation_location or None,
            installation_location_id=installation_location_id,
            status_rule=rule,
        )

    def _derive_status(
        self,
        status: str,
        quantity: int,
        location: str,
        location_id: Optional[int],
        installation_type: str = InstallationType.PORTABLE.value,
        installation_quantity: int = 0,
    ) -> tuple[str, StatusRule]:
        if quantity == 0:
            return EquipmentStatus.UNAVAILABLE.value, StatusRule.QUANTITY
        if installation_type == InstallationType.FIXED.value and installation_quantity > 0:
            if status in (EquipmentStatus.MAINTENANCE.value, EquipmentStatus.UNAVAILABLE.value):
                return status, StatusRule.INSTALLATION
            return EquipmentStatus.IN_USE.value, StatusRule.INSTALLATION
        if is_home_location(location, self.home_location_name):
            return EquipmentStatus.AVAILABLE.value, StatusRule.HOME_LOCATION
        if location or location_id is not None:
            if status != EquipmentStatus.MAINTENANCE.value:
                return EquipmentStatus.IN_USE.value, StatusRule.LOCATION
        return status, StatusRule.NONE

    def _resolve(
        self,
        kind: str,
        resolver: Optional[NameResolver],
        ref_id: Optional[int],
        text: Optional[str],
    ) -> tuple[str, Optional[int]]:
        fallback = text or ""
        if ref_id is None:
            return fallback, None
        if resolver is None:
            return fallback, ref_id
        try:
            return resolver.resolve(ref_id), ref_id
        except LookupNotFound:
            logger.warning("%s id %s did not resolve; keeping %r", kind.capitalize(), ref_id, fallback)
        except LookupFailed as exc:
            logger.warning("%s lookup for id %s failed (%s); keeping %r", kind.capitalize(), ref_id, exc, fallback)
        return fallback, ref_id
