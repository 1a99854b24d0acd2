import io
import json
import zipfile
from types import SimpleNamespace

import numpy as np
import pytest
from PIL import Image

from toonvocab.db import VocabularyStore
from toonvocab.ocr import OcrCallResult


def make_image(width, height, color=(255, 255, 255), fmt="PNG", mode="RGB"):
    image = Image.new(mode, (width, height), color)
    out = io.BytesIO()
    image.save(out, fmt)
    return out.getvalue()


def make_noise_image(width, height, seed=0):
    """Incompressible PNG, so its byte size grows with its height."""
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    out = io.BytesIO()
    Image.fromarray(pixels, "RGB").save(out, "PNG")
    return out.getvalue()


def make_zip(entries):
    out = io.BytesIO()
    with zipfile.ZipFile(out, "w") as archive:
        for name, data in entries:
            archive.writestr(name, data)
    return out.getvalue()


def ocr_payload(words, exit_code=1):
    return {
        "OCRExitCode": exit_code,
        "ParsedResults": [
            {
                "TextOverlay": {
                    "Lines": [
                        {
                            "Words": [
                                {"WordText": text, "Left": left, "Top": top, "Width": width, "Height": height}
                                for text, left, top, width, height in words
                            ]
                        }
                    ]
                }
            }
        ],
    }


class FakeOcrClient:
    """Returns queued payloads in order; repeats the last one when the queue runs out."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def call(self, image):
        self.calls.append(image)
        index = min(len(self.calls) - 1, len(self.results) - 1)
        return self.results[index]

    def close(self):
        pass


def ok_result(words):
    return OcrCallResult.from_payload(ocr_payload(words))


class FakeModels:
    def __init__(self, text):
        self.text = text
        self.requests = []

    def generate_content(self, **kwargs):
        self.requests.append(kwargs)
        return SimpleNamespace(text=self.text)


class FakeGenaiClient:
    def __init__(self, payload):
        text = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
        self.models = FakeModels(text)


def item(term, definition="meaning", score=50, sense="sense", chapter="", global_=""):
    return {
        "term": term,
        "definition": definition,
        "importanceScore": score,
        "senseKey": sense,
        "chapterExample": chapter,
        "globalExample": global_,
    }


@pytest.fixture()
def store(tmp_path):
    store = VocabularyStore(f"sqlite:///{tmp_path / 'test.db'}")
    store.create_schema()
    store.ensure_series("solo-leveling", "Solo Leveling")
    yield store
    store.dispose()
