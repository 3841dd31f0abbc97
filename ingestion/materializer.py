"""
Record materializers: turn one decoded CSV record into a stored entity.

The batch executor only distinguishes "produced an id", "did not" and
"raised". Duplicate handling is the materializer's decision, signalled by
raising DuplicateError.
"""

import logging
import re
import unicodedata
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import ImportConfig
from core.exceptions import DuplicateError, SinkError, ValidationError
from ingestion.cache import BoundedCache
from models.imported_record import ImportedRecord
from schemas.records import ImportedRecordCreate

logger = logging.getLogger(__name__)

TITLE_FIELDS = ("post_title", "title")
CONTENT_FIELDS = ("post_content", "content")
EXCERPT_FIELDS = ("post_excerpt", "excerpt")
RESERVED_FIELDS = frozenset(TITLE_FIELDS + CONTENT_FIELDS + EXCERPT_FIELDS + ("post_name",))

DEFAULT_SLUG = "csv-import-record"
MAX_SLUG_LENGTH = 190

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z0-9_\-]+)\s*\}\}")
_NON_SLUG = re.compile(r"[^a-z0-9]+")
_NON_KEY = re.compile(r"[^a-z0-9_\-]")


def field_value(record: Dict[str, str], names: Iterable[str], default: str = "") -> str:
    """First non-empty value among ``names``"""
    for name in names:
        value = record.get(name)
        if value and value.strip():
            return value.strip()
    return default


def slugify(title: str) -> str:
    """Lowercase ASCII slug, words joined by hyphens"""
    text = unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode("ascii")
    slug = _NON_SLUG.sub("-", text.lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-") or DEFAULT_SLUG


def meta_key(column: str) -> str:
    """Sanitized meta key for a column, always prefixed with an underscore"""
    key = _NON_KEY.sub("", column.lower())
    return key if key.startswith("_") else f"_{key}"


TemplatePart = Tuple[str, Optional[str]]


def template_parts(template: str) -> List[TemplatePart]:
    """
    Split ``template`` into ``(text, name)`` parts.

    Literal text has ``name`` None; a placeholder keeps its original
    marker as ``text`` so an unknown name can be written back unchanged.
    """
    parts: List[TemplatePart] = []
    position = 0
    for match in _PLACEHOLDER.finditer(template):
        if match.start() > position:
            parts.append((template[position:match.start()], None))
        parts.append((match.group(0), match.group(1)))
        position = match.end()
    if position < len(template):
        parts.append((template[position:], None))
    return parts


def render_template(template: str, record: Dict[str, str], parts: Optional[List[TemplatePart]] = None) -> str:
    """
    Fill ``{{placeholder}}`` markers from the record.

    ``title``, ``content`` and ``excerpt`` resolve through their aliases;
    other names are looked up as columns. Unknown placeholders are kept.
    Pass pre-split ``parts`` to skip re-parsing a template used per record.
    """
    aliases = {
        "title": field_value(record, TITLE_FIELDS),
        "content": field_value(record, CONTENT_FIELDS),
        "excerpt": field_value(record, EXCERPT_FIELDS),
    }
    if parts is None:
        parts = template_parts(template)

    rendered = []
    for text, name in parts:
        if name is None:
            rendered.append(text)
        elif name in aliases:
            rendered.append(aliases[name])
        else:
            rendered.append(record.get(name, text))
    return "".join(rendered)


class RecordMaterializer(ABC):
    """Contract for turning a record into a stored entity"""

    @abstractmethod
    async def materialize(
        self,
        record: Dict[str, str],
        config: ImportConfig,
        run_id: str
    ) -> Optional[int]:
        """
        Store one record.

        Returns:
            The id of the created entity, or None if nothing was created

        Raises:
            ValidationError: The record content is invalid
            DuplicateError: The record already exists (skip signal)
            SinkError: The store failed to persist the record
        """
        pass


class SQLRecordMaterializer(RecordMaterializer):
    """
    Materialize records into the ``imported_records`` table.

    Per-run state (slugs handed out, titles known to exist) lives in bounded
    caches on the instance; create one materializer per run.
    """

    def __init__(self, db_session: AsyncSession, cache_size: int = 1000):
        self.db = db_session
        self.used_slugs: BoundedCache[bool] = BoundedCache(cache_size)
        self.known_titles: BoundedCache[bool] = BoundedCache(cache_size)
        self.templates: BoundedCache[List[TemplatePart]] = BoundedCache(16)

    def build(self, record: Dict[str, str], config: ImportConfig, run_id: str) -> ImportedRecordCreate:
        """Map a CSV record onto the create schema"""
        content = field_value(record, CONTENT_FIELDS)
        if config.template:
            parts = self.templates.get(config.template)
            if parts is None:
                parts = template_parts(config.template)
                self.templates.put(config.template, parts)
            content = render_template(config.template, record, parts)

        meta = {
            meta_key(column): value
            for column, value in record.items()
            if column not in RESERVED_FIELDS and value
        }

        try:
            return ImportedRecordCreate(
                record_type=config.record_type,
                status=config.record_status,
                title=field_value(record, TITLE_FIELDS),
                content=content,
                excerpt=field_value(record, EXCERPT_FIELDS),
                meta=meta,
                import_run_id=run_id,
            )
        except PydanticValidationError as e:
            fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
            raise ValidationError(
                f"Invalid record: {fields or 'unknown field'}",
                context={"fields": fields},
                original_exception=e
            )

    async def _title_exists(self, title: str, record_type: str) -> bool:
        if (record_type, title) in self.known_titles:
            return True
        result = await self.db.execute(
            select(ImportedRecord.id).where(
                ImportedRecord.title == title,
                ImportedRecord.record_type == record_type
            ).limit(1)
        )
        exists = result.scalar_one_or_none() is not None
        if exists:
            self.known_titles.put((record_type, title), True)
        return exists

    async def _slug_taken(self, slug: str) -> bool:
        if slug in self.used_slugs:
            return True
        result = await self.db.execute(
            select(ImportedRecord.id).where(ImportedRecord.slug == slug).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def unique_slug(self, title: str) -> str:
        base = slugify(title)
        slug = base
        counter = 1
        while await self._slug_taken(slug):
            slug = f"{base}-{counter}"
            counter += 1
        return slug

    async def materialize(
        self,
        record: Dict[str, str],
        config: ImportConfig,
        run_id: str
    ) -> Optional[int]:
        item = self.build(record, config, run_id)

        try:
            if config.skip_duplicates and await self._title_exists(item.title, item.record_type):
                raise DuplicateError(
                    f"Record already exists: {item.title}",
                    context={"title": item.title, "record_type": item.record_type}
                )

            slug = await self.unique_slug(item.title)
            row = ImportedRecord(slug=slug, **item.model_dump())
            self.db.add(row)
            await self.db.commit()

        except SQLAlchemyError as e:
            await self.db.rollback()
            raise SinkError(
                "Failed to store record",
                context={"title": item.title, "table_name": "imported_records"},
                original_exception=e
            )

        self.used_slugs.put(slug, True)
        self.known_titles.put((item.record_type, item.title), True)
        return row.id
