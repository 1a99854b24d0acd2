"""Chapter vocabulary storage on SQLAlchemy Core."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    text,
)
from sqlalchemy.engine import Connection, Engine

from toonvocab.errors import SeriesNotFound
from toonvocab.llm import ExtractedItem
from toonvocab.log import get_logger

logger = get_logger(__name__)

metadata = MetaData()

series_table = Table(
    "series",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("slug", String(255), nullable=False, unique=True),
    Column("name", Text, nullable=False),
)

chapters_table = Table(
    "chapters",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("series_id", Integer, ForeignKey("series.id", ondelete="CASCADE"), nullable=False),
    Column("chapter_number", Integer, nullable=False),
    Column("title", Text),
    Column("external_url", Text),
    UniqueConstraint("series_id", "chapter_number"),
)


def _item_tables(name: str, term_column: str, link_name: str, fk_column: str) -> tuple[Table, Table]:
    items = Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True),
        Column(term_column, Text, nullable=False),
        Column("definition", Text, nullable=False),
        Column("sense_key", Text, nullable=False),
        Column("example", Text),
        UniqueConstraint(term_column, "sense_key"),
    )
    links = Table(
        link_name,
        metadata,
        Column("id", Integer, primary_key=True),
        Column("chapter_id", Integer, ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False),
        Column(fk_column, Integer, ForeignKey(f"{name}.id", ondelete="CASCADE"), nullable=False),
        Column("importance_score", Integer, nullable=False, default=0),
        Column("example", Text),
        UniqueConstraint("chapter_id", fk_column),
    )
    return items, links


vocabulary_table, chapter_vocabulary_table = _item_tables(
    "vocabulary", "term", "chapter_vocabulary", "vocabulary_id"
)
grammar_table, chapter_grammar_table = _item_tables(
    "grammar", "pattern", "chapter_grammar", "grammar_id"
)


@dataclass(frozen=True)
class ItemKind:
    name: str
    table: str
    term_column: str
    link_table: str
    fk_column: str


VOCABULARY = ItemKind("vocabulary", "vocabulary", "term", "chapter_vocabulary", "vocabulary_id")
GRAMMAR = ItemKind("grammar", "grammar", "pattern", "chapter_grammar", "grammar_id")
KINDS: Dict[str, ItemKind] = {VOCABULARY.name: VOCABULARY, GRAMMAR.name: GRAMMAR}


@dataclass(slots=True)
class PersistResult:
    chapter_id: int
    new_inserted: int
    total_in_chapter: int
    kind: str = VOCABULARY.name


@dataclass(slots=True)
class StoreResult:
    chapter_id: int
    vocabulary: PersistResult
    grammar: PersistResult


class VocabularyStore:
    def __init__(self, dsn: str | None = None, engine: Engine | None = None):
        if engine is None:
            if not dsn:
                raise ValueError("A database URL or engine is required")
            engine = create_engine(_ensure_psycopg_driver(dsn), future=True, pool_pre_ping=True)
        self.engine: Engine = engine

    def dispose(self) -> None:
        self.engine.dispose()

    def create_schema(self) -> None:
        metadata.create_all(self.engine)

    def ensure_series(self, slug: str, name: str) -> int:
        with self.engine.begin() as conn:
            row = conn.execute(
                text("SELECT id FROM series WHERE slug = :slug"),
                {"slug": slug},
            ).first()
            if row:
                return row[0]
            series_id = conn.execute(
                text("INSERT INTO series (slug, name) VALUES (:slug, :name) RETURNING id"),
                {"slug": slug, "name": name},
            ).scalar_one()
        logger.info("series_created", slug=slug, series_id=series_id)
        return series_id

    def get_or_create_chapter(
        self,
        series_slug: str,
        chapter_number: int,
        title: Optional[str] = None,
        external_url: Optional[str] = None,
    ) -> int:
        with self.engine.begin() as conn:
            return _get_or_create_chapter(conn, series_slug, chapter_number, title, external_url)

    def store_chapter_items(
        self,
        vocabulary: Sequence[ExtractedItem],
        grammar: Sequence[ExtractedItem],
        series_slug: str,
        chapter_number: int,
        chapter_title: Optional[str] = None,
        chapter_link: Optional[str] = None,
    ) -> StoreResult:
        """Stores one chapter's vocabulary and grammar in a single transaction."""
        with self.engine.begin() as conn:
            chapter_id = _get_or_create_chapter(
                conn, series_slug, chapter_number, chapter_title, chapter_link
            )
            vocab_result = _store_items(conn, VOCABULARY, chapter_id, vocabulary)
            grammar_result = _store_items(conn, GRAMMAR, chapter_id, grammar)

        return StoreResult(chapter_id=chapter_id, vocabulary=vocab_result, grammar=grammar_result)

    def store_chapter_vocabulary(
        self,
        items: Sequence[ExtractedItem],
        series_slug: str,
        chapter_number: int,
        chapter_title: Optional[str] = None,
        chapter_link: Optional[str] = None,
        kind: str = VOCABULARY.name,
    ) -> PersistResult:
        with self.engine.begin() as conn:
            chapter_id = _get_or_create_chapter(
                conn, series_slug, chapter_number, chapter_title, chapter_link
            )
            return _store_items(conn, KINDS[kind], chapter_id, items)

    def chapter_items(self, chapter_id: int, kind: str = VOCABULARY.name) -> List[ExtractedItem]:
        """Items linked to a chapter, most important first."""
        item_kind = KINDS[kind]
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(
                    f"""
                    SELECT i.{item_kind.term_column} AS term, i.definition, i.sense_key,
                           i.example AS global_example, l.importance_score,
                           l.example AS chapter_example
                    FROM {item_kind.link_table} l
                    JOIN {item_kind.table} i ON i.id = l.{item_kind.fk_column}
                    WHERE l.chapter_id = :chapter_id
                    ORDER BY l.importance_score DESC, i.id
                    """
                ),
                {"chapter_id": chapter_id},
            ).mappings().all()

        return [
            ExtractedItem(
                term=row["term"],
                definition=row["definition"],
                importance_score=row["importance_score"],
                sense_key=row["sense_key"],
                chapter_example=row["chapter_example"] or "",
                global_example=row["global_example"] or "",
            )
            for row in rows
        ]

    def count_items(self, kind: str = VOCABULARY.name) -> int:
        item_kind = KINDS[kind]
        with self.engine.connect() as conn:
            return conn.execute(text(f"SELECT COUNT(*) FROM {item_kind.table}")).scalar_one()


def _get_or_create_chapter(
    conn: Connection,
    series_slug: str,
    chapter_number: int,
    title: Optional[str],
    external_url: Optional[str],
) -> int:
    series = conn.execute(
        text("SELECT id FROM series WHERE slug = :slug"),
        {"slug": series_slug},
    ).first()
    if not series:
        raise SeriesNotFound(series_slug)
    series_id = series[0]

    existing = conn.execute(
        text(
            """
            SELECT id, external_url
            FROM chapters
            WHERE series_id = :series_id AND chapter_number = :chapter_number
            """
        ),
        {"series_id": series_id, "chapter_number": chapter_number},
    ).mappings().first()

    if existing:
        if external_url and existing["external_url"] != external_url:
            conn.execute(
                text("UPDATE chapters SET external_url = :url WHERE id = :id"),
                {"url": external_url, "id": existing["id"]},
            )
            logger.debug("chapter_link_updated", chapter_id=existing["id"])
        return existing["id"]

    chapter_id = conn.execute(
        text(
            """
            INSERT INTO chapters (series_id, chapter_number, title, external_url)
            VALUES (:series_id, :chapter_number, :title, :external_url)
            RETURNING id
            """
        ),
        {
            "series_id": series_id,
            "chapter_number": chapter_number,
            "title": title or f"Chapter {chapter_number}",
            "external_url": external_url,
        },
    ).scalar_one()
    logger.info("chapter_created", chapter_id=chapter_id, series=series_slug, number=chapter_number)
    return chapter_id


def _store_items(
    conn: Connection,
    item_kind: ItemKind,
    chapter_id: int,
    items: Sequence[ExtractedItem],
) -> PersistResult:
    unique: Dict[tuple, ExtractedItem] = {}
    for item in items:
        unique.setdefault(item.key, item)

    inserted = 0
    for item in unique.values():
        params = {"term": item.term, "sense_key": item.sense_key}
        row = conn.execute(
            text(
                f"""
                SELECT id FROM {item_kind.table}
                WHERE {item_kind.term_column} = :term AND sense_key = :sense_key
                """
            ),
            params,
        ).first()

        if row:
            item_id = row[0]
        else:
            item_id = conn.execute(
                text(
                    f"""
                    INSERT INTO {item_kind.table} ({item_kind.term_column}, definition, sense_key, example)
                    VALUES (:term, :definition, :sense_key, :example)
                    RETURNING id
                    """
                ),
                {**params, "definition": item.definition, "example": item.global_example or None},
            ).scalar_one()
            inserted += 1

        conn.execute(
            text(
                f"""
                INSERT INTO {item_kind.link_table} (chapter_id, {item_kind.fk_column}, importance_score, example)
                VALUES (:chapter_id, :item_id, :importance_score, :example)
                ON CONFLICT (chapter_id, {item_kind.fk_column})
                DO UPDATE SET
                    importance_score = EXCLUDED.importance_score,
                    example = EXCLUDED.example
                """
            ),
            {
                "chapter_id": chapter_id,
                "item_id": item_id,
                "importance_score": item.importance_score,
                "example": item.chapter_example or None,
            },
        )

    total = conn.execute(
        text(f"SELECT COUNT(*) FROM {item_kind.link_table} WHERE chapter_id = :chapter_id"),
        {"chapter_id": chapter_id},
    ).scalar_one()

    logger.info(
        "chapter_items_stored",
        kind=item_kind.name,
        chapter_id=chapter_id,
        submitted=len(items),
        new_inserted=inserted,
        total_in_chapter=total,
    )
    return PersistResult(chapter_id=chapter_id, new_inserted=inserted, total_in_chapter=total, kind=item_kind.name)


def _ensure_psycopg_driver(dsn: str) -> str:
    if dsn.startswith("postgresql://") and "+psycopg" not in dsn:
        return dsn.replace("postgresql://", "postgresql+psycopg://", 1)
    if dsn.startswith("postgres://") and "+psycopg" not in dsn:
        return dsn.replace("postgres://", "postgresql+psycopg://", 1)
    return dsn
