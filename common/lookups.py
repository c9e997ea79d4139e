"""Database-backed resolvers for the derivation engine."""
from typing import Type, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import get_settings
from .derivation import StateDerivationEngine
from .errors import LookupFailed, LookupNotFound
from .models import Category, EquipmentType, Location

NamedModel = Union[Type[Location], Type[Category], Type[EquipmentType]]


class _SqlNameResolver:
    model: NamedModel
    kind: str

    def __init__(self, db: Session) -> None:
        self.db = db

    def resolve(self, ref_id: int) -> str:
        try:
            row = self.db.get(self.model, ref_id)
        except SQLAlchemyError as exc:
            raise LookupFailed(f"{self.kind} lookup failed: {exc}") from exc
        if row is None or not row.name:
            raise LookupNotFound(self.kind, ref_id)
        return row.name


class SqlLocationResolver(_SqlNameResolver):
    model = Location
    kind = "location"


class SqlCategoryResolver(_SqlNameResolver):
    model = Category
    kind = "category"


class SqlTypeResolver(_SqlNameResolver):
    model = EquipmentType
    kind = "type"


def build_engine(db: Session) -> StateDerivationEngine:
    return StateDerivationEngine(
        location_resolver=SqlLocationResolver(db),
        category_resolver=SqlCategoryResolver(db),
        type_resolver=SqlTypeResolver(db),
        home_location_name=get_settings().home_location_name,
    )
