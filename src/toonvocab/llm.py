# -*- coding: utf-8 -*-
import json
from typing import Any, Dict, List, Optional, Tuple

from google import genai
from google.genai import types

from toonvocab.config import GEMINI_MODEL
from toonvocab.errors import ConfigurationError, EmptyDialogue, InvalidModelResponse
from toonvocab.log import get_logger

logger = get_logger(__name__)

REQUIRED_FIELDS = ('term', 'definition', 'importanceScore', 'senseKey', 'chapterExample', 'globalExample')

_ITEM_SCHEMA = {
    'type': 'OBJECT',
    'properties': {
        'term': {'type': 'STRING'},
        'definition': {'type': 'STRING'},
        'importanceScore': {'type': 'NUMBER'},
        'senseKey': {'type': 'STRING'},
        'chapterExample': {'type': 'STRING'},
        'globalExample': {'type': 'STRING'},
    },
    'required': list(REQUIRED_FIELDS),
}

EXTRACTION_SCHEMA = {
    'type': 'OBJECT',
    'properties': {
        'vocabulary': {'type': 'ARRAY', 'items': _ITEM_SCHEMA},
        'grammar': {'type': 'ARRAY', 'items': _ITEM_SCHEMA},
    },
    'required': ['vocabulary', 'grammar'],
}

EXTRACTION_PROMPT = """You are a Korean language expert building flashcards for learners who read webtoons.

Given the Korean dialogue below (recovered by OCR, so expect the odd misread),
extract the most useful VOCABULARY and GRAMMAR for understanding this chapter.

VOCABULARY RULES:
- Give each word in dictionary form (verbs and adjectives end in 다).
- Prefer words that matter for the story and are common in everyday Korean.
- Skip names, onomatopoeia, sound effects and trivial words such as 이, 그, 저.
- Do not list the same word twice with the same meaning.

GRAMMAR RULES:
- List grammar patterns and endings actually used in the dialogue (e.g. -는데, -(으)ㄹ 거야).
- Write the pattern in its canonical form in the term field.

FOR EVERY ITEM:
- definition: concise English meaning.
- importanceScore: 0-100, how much a learner needs it for this chapter.
- senseKey: 1-3 lowercase English words naming the meaning used here, so
  homonyms get separate entries (e.g. 배 -> "ship", "pear", "stomach").
- chapterExample: the sentence from the dialogue where it appears.
- globalExample: a short natural Korean sentence using it in the same sense.

<dialogue>
{dialogue}
</dialogue>"""


class ExtractedItem:
    """A vocabulary word or grammar pattern pulled out of chapter dialogue."""

    def __init__(self, term: str, definition: str, importance_score: int, sense_key: str,
                 chapter_example: str = "", global_example: str = ""):
        self.term = term
        self.definition = definition
        self.importance_score = importance_score
        self.sense_key = sense_key
        self.chapter_example = chapter_example
        self.global_example = global_example

    @property
    def key(self) -> Tuple[str, str]:
        return (self.term, self.sense_key)

    def to_dict(self) -> Dict:
        return {
            'term': self.term,
            'definition': self.definition,
            'importanceScore': self.importance_score,
            'senseKey': self.sense_key,
            'chapterExample': self.chapter_example,
            'globalExample': self.global_example
        }

    def __repr__(self) -> str:
        return f"ExtractedItem({self.term!r}, sense={self.sense_key!r}, score={self.importance_score})"


class ExtractionResult:
    def __init__(self, vocabulary: List[ExtractedItem], grammar: List[ExtractedItem]):
        self.vocabulary = vocabulary
        self.grammar = grammar

    def __len__(self) -> int:
        return len(self.vocabulary) + len(self.grammar)

    def to_dict(self) -> Dict:
        return {
            'vocabulary': [item.to_dict() for item in self.vocabulary],
            'grammar': [item.to_dict() for item in self.grammar]
        }


def _strip_fences(text: str) -> str:
    return text.replace("```json", "").replace("```", "").strip()


def _text_field(raw: Dict, name: str, required: bool) -> Optional[str]:
    value = raw.get(name)
    if not isinstance(value, str):
        return None
    value = value.strip()
    if required and not value:
        return None
    return value


def _score_field(raw: Dict) -> Optional[int]:
    value = raw.get('importanceScore')
    # bool is an int subclass and never a valid score
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not 0 <= value <= 100:
        return None
    return int(round(value))


def build_item(raw: Any) -> Optional[ExtractedItem]:
    """Validated item, or None when any required field is missing or malformed."""
    if not isinstance(raw, dict):
        return None

    term = _text_field(raw, 'term', required=True)
    definition = _text_field(raw, 'definition', required=True)
    sense_key = _text_field(raw, 'senseKey', required=True)
    chapter_example = _text_field(raw, 'chapterExample', required=False)
    global_example = _text_field(raw, 'globalExample', required=False)
    score = _score_field(raw)

    if None in (term, definition, sense_key, chapter_example, global_example, score):
        return None
    return ExtractedItem(term, definition, score, sense_key, chapter_example, global_example)


def _build_items(raw_items: List, kind: str) -> List[ExtractedItem]:
    items: List[ExtractedItem] = []
    seen = set()
    for raw in raw_items:
        item = build_item(raw)
        if item is None or item.key in seen:
            continue
        seen.add(item.key)
        items.append(item)

    dropped = len(raw_items) - len(items)
    if dropped:
        logger.warning("extraction_items_dropped", kind=kind, raw_count=len(raw_items), dropped=dropped)
    return items


def parse_extraction_response(text: Optional[str]) -> ExtractionResult:
    """
    Validates the model's JSON payload.

    The envelope must be an object holding `vocabulary` and `grammar` arrays;
    anything else fails the whole response. Incomplete items are dropped one
    by one.
    """
    if not text or not text.strip():
        raise InvalidModelResponse("Empty response from generative model")

    try:
        data = json.loads(_strip_fences(text))
    except json.JSONDecodeError as e:
        raise InvalidModelResponse(f"Model response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise InvalidModelResponse("Model response is not a JSON object")

    for key in ('vocabulary', 'grammar'):
        if not isinstance(data.get(key), list):
            raise InvalidModelResponse(f"Model response is missing the '{key}' array")

    return ExtractionResult(
        vocabulary=_build_items(data['vocabulary'], 'vocabulary'),
        grammar=_build_items(data['grammar'], 'grammar')
    )


class VocabularyExtractor:
    """
    Single-request Gemini extractor.
    The whole chapter's dialogue goes in one call under a fixed JSON schema.
    """
    def __init__(self, api_key: Optional[str], model: str = GEMINI_MODEL, client: Any = None):
        if client is None:
            if not api_key:
                raise ConfigurationError("GEMINI_API_KEY not configured")
            client = genai.Client(api_key=api_key)
        self.client = client
        self.model_name = model

    def build_prompt(self, dialogue: str) -> str:
        return EXTRACTION_PROMPT.format(dialogue=dialogue.strip())

    def extract(self, dialogue: str, trace=None) -> ExtractionResult:
        """
        Returns vocabulary and grammar for the dialogue.

        Raises:
            EmptyDialogue: dialogue is blank; the model is not called
            InvalidModelResponse: the reply does not match the schema envelope
        """
        if not dialogue or not dialogue.strip():
            raise EmptyDialogue("Dialogue is empty")

        prompt = self.build_prompt(dialogue)
        if trace is not None:
            trace.save_text('word-extraction-prompt', prompt)

        logger.debug("extraction_request", model=self.model_name, prompt_length=len(prompt))
        response = self.client.models.generate_content(
            model=self.model_name,
            contents=prompt,
            config=types.GenerateContentConfig(
                response_mime_type='application/json',
                response_schema=EXTRACTION_SCHEMA,
            ),
        )

        text = getattr(response, 'text', None)
        if trace is not None and text is not None:
            trace.save_text('word-extraction-response-raw', text)

        result = parse_extraction_response(text)
        logger.info("extraction_completed", vocabulary=len(result.vocabulary), grammar=len(result.grammar))
        return result
