import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from toonvocab.db import GRAMMAR, VOCABULARY, VocabularyStore, _ensure_psycopg_driver
from toonvocab.errors import SeriesNotFound
from toonvocab.llm import ExtractedItem


def vocab(term, sense="s", score=50, definition="meaning", chapter="", global_=""):
    return ExtractedItem(term, definition, score, sense, chapter, global_)


def test_store_inserts_items_and_links(store):
    result = store.store_chapter_items(
        [vocab("사과", "fruit", 80), vocab("배", "ship", 60)],
        [vocab("-는데", "background", 40)],
        "solo-leveling",
        1,
    )

    assert result.vocabulary.new_inserted == 2
    assert result.vocabulary.total_in_chapter == 2
    assert result.grammar.new_inserted == 1
    assert result.grammar.total_in_chapter == 1
    assert store.count_items(VOCABULARY.name) == 2
    assert store.count_items(GRAMMAR.name) == 1


def test_resubmitting_a_chapter_is_idempotent(store):
    items = [vocab("사과", "fruit", 80), vocab("배", "ship", 60)]
    first = store.store_chapter_vocabulary(items, "solo-leveling", 3)
    second = store.store_chapter_vocabulary(items, "solo-leveling", 3)

    assert first.chapter_id == second.chapter_id
    assert first.new_inserted == 2
    assert second.new_inserted == 0
    assert second.total_in_chapter == 2
    assert store.count_items() == 2


def test_same_term_different_sense_is_a_new_row(store):
    store.store_chapter_vocabulary([vocab("배", "ship")], "solo-leveling", 1)
    result = store.store_chapter_vocabulary([vocab("배", "pear")], "solo-leveling", 1)

    assert result.new_inserted == 1
    assert result.total_in_chapter == 2


def test_word_shared_across_chapters_is_stored_once(store):
    store.store_chapter_vocabulary([vocab("사과", "fruit")], "solo-leveling", 1)
    result = store.store_chapter_vocabulary([vocab("사과", "fruit"), vocab("물", "water")], "solo-leveling", 2)

    assert result.new_inserted == 1
    assert result.total_in_chapter == 2
    assert store.count_items() == 2


def test_duplicates_within_one_submission_count_once(store):
    result = store.store_chapter_vocabulary(
        [vocab("사과", "fruit", 80), vocab("사과", "fruit", 10)], "solo-leveling", 1
    )

    assert result.new_inserted == 1
    assert store.chapter_items(result.chapter_id)[0].importance_score == 80


def test_link_is_updated_on_resubmission(store):
    first = store.store_chapter_vocabulary([vocab("사과", "fruit", 30, chapter="old")], "solo-leveling", 1)
    store.store_chapter_vocabulary([vocab("사과", "fruit", 90, chapter="new")], "solo-leveling", 1)

    stored = store.chapter_items(first.chapter_id)
    assert [(i.importance_score, i.chapter_example) for i in stored] == [(90, "new")]


def test_chapter_items_ordered_by_importance(store):
    result = store.store_chapter_vocabulary(
        [vocab("a", score=10), vocab("b", score=90, global_="예문"), vocab("c", score=50)], "solo-leveling", 1
    )

    stored = store.chapter_items(result.chapter_id)
    assert [i.term for i in stored] == ["b", "c", "a"]
    assert stored[0].global_example == "예문"


def test_unknown_series_raises(store):
    with pytest.raises(SeriesNotFound, match="no-such-series"):
        store.store_chapter_vocabulary([vocab("a")], "no-such-series", 1)
    assert store.count_items() == 0


def test_chapter_defaults_and_link_update(store):
    chapter_id = store.get_or_create_chapter("solo-leveling", 7)
    assert store.get_or_create_chapter("solo-leveling", 7, external_url="https://example.com/7") == chapter_id

    with store.engine.connect() as conn:
        row = conn.execute(
            text("SELECT title, external_url FROM chapters WHERE id = :id"), {"id": chapter_id}
        ).one()
    assert row.title == "Chapter 7"
    assert row.external_url == "https://example.com/7"


def test_ensure_series_is_idempotent(store):
    assert store.ensure_series("solo-leveling", "Solo Leveling") == store.ensure_series("solo-leveling", "Other")


def test_store_requires_dsn_or_engine():
    with pytest.raises(ValueError):
        VocabularyStore()


def test_ensure_psycopg_driver():
    assert _ensure_psycopg_driver("postgresql://u@h/db") == "postgresql+psycopg://u@h/db"
    assert _ensure_psycopg_driver("postgres://u@h/db") == "postgresql+psycopg://u@h/db"
    assert _ensure_psycopg_driver("sqlite:///x.db") == "sqlite:///x.db"


def test_failed_grammar_batch_rolls_back_vocabulary(store):
    broken = ExtractedItem("-는데", None, 40, "background")

    with pytest.raises(IntegrityError):
        store.store_chapter_items([vocab("사과", "fruit"), vocab("배", "ship")], [broken], "solo-leveling", 5)

    assert store.count_items(VOCABULARY.name) == 0
    assert store.count_items(GRAMMAR.name) == 0
    with store.engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM chapter_vocabulary")).scalar_one() == 0
        assert conn.execute(text("SELECT COUNT(*) FROM chapters")).scalar_one() == 0
