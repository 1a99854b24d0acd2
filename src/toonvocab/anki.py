# -*- coding: utf-8 -*-
import genanki #type: ignore
from pathlib import Path
from typing import Dict, Iterable, Set, Tuple
from toonvocab.config import DECK_ID, DECK_NAME, MODEL_ID, MODEL_NAME, FIELDS, TEMPLATES, CSS
from toonvocab.llm import ExtractedItem
from toonvocab.log import get_logger

logger = get_logger(__name__)


class AnkiDeckBuilder:
    """Builds an Anki deck from extracted vocabulary and grammar."""

    def __init__(self, deck_name: str = DECK_NAME, deck_id: int = DECK_ID):
        self.deck_id = deck_id
        self.deck_name = deck_name

        self.model = genanki.Model(
            MODEL_ID,
            MODEL_NAME,
            fields=FIELDS,
            templates=TEMPLATES,
            css=CSS
        )

        self.deck = genanki.Deck(self.deck_id, self.deck_name)
        self.notes_created = 0
        self.notes_skipped = 0
        self.seen: Set[Tuple[str, str, str]] = set()

    def add_item(self, item: ExtractedItem, kind: str = 'vocabulary') -> bool:
        """
        Adds one item as a note.

        Returns:
            True if a note was added, False if the item was skipped
        """
        term = (item.term or '').strip()
        definition = (item.definition or '').strip()
        if not term or not definition:
            logger.debug("anki_item_skipped", term=term, reason="incomplete")
            self.notes_skipped += 1
            return False

        key = (term, item.sense_key, kind)
        if key in self.seen:
            logger.debug("anki_item_skipped", term=term, reason="duplicate")
            self.notes_skipped += 1
            return False

        # One note id per (term, sense, kind)
        note = genanki.Note(
            model=self.model,
            guid=genanki.guid_for(term, item.sense_key, kind),
            fields=[
                term,
                definition,
                kind,
                (item.chapter_example or '').strip(),
                (item.global_example or '').strip()
            ],
            tags=[item.sense_key.replace(' ', '_'), kind]
        )
        self.deck.add_note(note)
        self.seen.add(key)
        self.notes_created += 1
        return True

    def add_items(self, items: Iterable[ExtractedItem], kind: str = 'vocabulary') -> int:
        return sum(1 for item in items if self.add_item(item, kind))

    def save_package(self, output_path: Path) -> bool:
        """
        Writes the .apkg file.

        Returns:
            False when the deck is empty and nothing was written
        """
        if self.notes_created == 0:
            logger.warning("anki_deck_empty", path=str(output_path))
            return False

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        genanki.Package(self.deck).write_to_file(str(output_path))
        logger.info("anki_deck_saved", path=str(output_path), created=self.notes_created, skipped=self.notes_skipped)
        return True

    def get_statistics(self) -> Dict[str, int]:
        return {
            'created': self.notes_created,
            'skipped': self.notes_skipped,
            'total_processed': self.notes_created + self.notes_skipped
        }
