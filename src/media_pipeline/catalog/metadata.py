"""Read-only lookups of entity slugs and titles used for naming uploads."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from sqlalchemy import column, select, table
from sqlalchemy.exc import SQLAlchemyError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityTable:
    name: str
    id_column: str = "id"
    slug_column: str | None = "slug"
    title_column: str | None = "title"


DEFAULT_ENTITY_TABLES: dict[str, EntityTable] = {
    "product": EntityTable("products", title_column="name"),
    "product_image": EntityTable("product_images", slug_column=None, title_column="alt_text"),
    "user": EntityTable("users", slug_column=None, title_column="name"),
    "course": EntityTable("courses"),
    "lesson": EntityTable("lessons"),
    "brand": EntityTable("brands", title_column="name"),
    "category": EntityTable("categories", title_column="name"),
}


class SqlEntityMetadataStore:
    def __init__(
        self,
        session_factory,
        tables: Mapping[str, EntityTable] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._tables = dict(tables or DEFAULT_ENTITY_TABLES)

    def get_slug(self, resource: str, entity_id: str | int | None) -> str | None:
        entity = self._tables.get(resource)
        if entity is None or entity.slug_column is None:
            return None
        return self._lookup(entity, entity.slug_column, entity_id)

    def get_title(self, resource: str, entity_id: str | int | None) -> str | None:
        entity = self._tables.get(resource)
        if entity is None or entity.title_column is None:
            return None
        return self._lookup(entity, entity.title_column, entity_id)

    def _lookup(self, entity: EntityTable, value_column: str, entity_id) -> str | None:
        if entity_id in (None, ""):
            return None
        source = table(entity.name, column(entity.id_column), column(value_column))
        statement = select(source.c[value_column]).where(
            source.c[entity.id_column] == entity_id
        )
        try:
            with self._session_factory() as db:
                value = db.execute(statement).scalar()
        except SQLAlchemyError as exc:
            LOGGER.warning(
                "Metadata lookup failed for %s/%s: %s", entity.name, entity_id, exc
            )
            return None
        return str(value) if value else None
