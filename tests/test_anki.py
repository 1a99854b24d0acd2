from toonvocab.anki import AnkiDeckBuilder
from toonvocab.llm import ExtractedItem


def test_builder_skips_incomplete_and_duplicate_items():
    builder = AnkiDeckBuilder()

    assert builder.add_item(ExtractedItem("사과", "apple", 80, "fruit", "사과 먹을래?", "사과가 맛있다"))
    assert builder.add_item(ExtractedItem("사과", "apology", 40, "apology"))
    assert not builder.add_item(ExtractedItem("사과", "apple again", 10, "fruit"))
    assert not builder.add_item(ExtractedItem("물", "  ", 50, "water"))

    assert builder.get_statistics() == {"created": 2, "skipped": 2, "total_processed": 4}


def test_grammar_notes_carry_their_kind():
    builder = AnkiDeckBuilder()
    builder.add_items([ExtractedItem("-는데", "but", 60, "contrast")], "grammar")

    note = builder.deck.notes[0]
    assert note.fields[2] == "grammar"
    assert "grammar" in note.tags


def test_save_package(tmp_path):
    builder = AnkiDeckBuilder()
    builder.add_item(ExtractedItem("밥", "rice", 90, "meal"))

    output = tmp_path / "decks" / "chapter.apkg"
    assert builder.save_package(output)
    assert output.stat().st_size > 0


def test_empty_deck_is_not_written(tmp_path):
    output = tmp_path / "empty.apkg"
    assert not AnkiDeckBuilder().save_package(output)
    assert not output.exists()


def test_same_term_as_vocabulary_and_grammar_gets_two_notes():
    builder = AnkiDeckBuilder()

    assert builder.add_item(ExtractedItem("같다", "same", 50, "identical"), "vocabulary")
    assert builder.add_item(ExtractedItem("같다", "same", 50, "identical"), "grammar")

    assert len({note.guid for note in builder.deck.notes}) == 2
