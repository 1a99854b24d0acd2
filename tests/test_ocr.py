import base64
from urllib.parse import parse_qs

import httpx
import pytest

from conftest import FakeOcrClient, make_image, make_noise_image, ocr_payload, ok_result
from toonvocab.debug import DebugTrace
from toonvocab.errors import ConfigurationError, OcrProviderError
from toonvocab.image_processing import create_adaptive_tiles, image_size
from toonvocab.ocr import OcrCallResult, OcrSpaceClient, TiledOcrService, parse_ocr_response


def test_parse_flattens_words():
    payload = ocr_payload([("안녕", 10, 20, 30, 15), ("  ", 0, 0, 1, 1), ("하세요", 45, 21, 40, 14)])

    fragments = parse_ocr_response(payload)

    assert [f.text for f in fragments] == ["안녕", "하세요"]
    assert fragments[0].bbox.to_dict() == {"x": 10.0, "y": 20.0, "width": 30.0, "height": 15.0}


def test_parse_tolerates_missing_overlay():
    assert parse_ocr_response({"OCRExitCode": 1, "ParsedResults": [{"TextOverlay": None}]}) == []
    assert parse_ocr_response({"OCRExitCode": 1}) == []


def test_call_result_keeps_provider_failure_as_data():
    result = OcrCallResult.from_payload({"OCRExitCode": 99, "ErrorMessage": ["Invalid API key"]})

    assert not result.ok
    assert result.exit_code == 99
    assert result.reason == "Invalid API key"
    assert not OcrCallResult.from_payload(["unexpected"]).ok


def test_client_requires_api_key():
    with pytest.raises(ConfigurationError, match="OCR_API_KEY"):
        OcrSpaceClient(None)


def test_client_posts_form_with_sniffed_filetype():
    seen = {}

    def handler(request):
        seen["apikey"] = request.headers["apikey"]
        seen["form"] = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        return httpx.Response(200, json={"OCRExitCode": 1, "ParsedResults": []})

    image = make_image(4, 4, fmt="PNG")
    with OcrSpaceClient("secret", transport=httpx.MockTransport(handler)) as client:
        result = client.call(image)

    assert result.ok
    assert seen["apikey"] == "secret"
    form = seen["form"]
    assert form["language"] == "kor"
    assert form["OCREngine"] == "2"
    assert form["isOverlayRequired"] == "true"
    assert form["scale"] == "false"
    assert form["filetype"] == "PNG"
    assert form["base64Image"] == "data:image/png;base64," + base64.b64encode(image).decode()


def test_client_returns_exit_code_failure_without_raising():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"OCRExitCode": 3, "ErrorMessage": "Quota exceeded"})
    )
    with OcrSpaceClient("key", transport=transport) as client:
        result = client.call(make_image(2, 2))

    assert not result.ok
    assert result.exit_code == 3
    assert result.messages == ["Quota exceeded"]


def test_client_propagates_http_errors():
    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
    with OcrSpaceClient("key", transport=transport) as client:
        with pytest.raises(httpx.HTTPStatusError):
            client.call(make_image(2, 2))


def test_single_tile_recognition():
    client = FakeOcrClient(ok_result([("안녕", 10, 20, 30, 15)]))
    service = TiledOcrService(client, tile_delay=0)

    fragments = service.recognize(make_image(100, 200))

    assert len(client.calls) == 1
    assert [(f.text, f.tile_index) for f in fragments] == [("안녕", 0)]


def test_tiles_are_sent_serially_with_delay():
    image = make_noise_image(200, 600)
    client = FakeOcrClient(ok_result([]))
    sleeps = []
    service = TiledOcrService(client, tile_size_threshold=len(image) // 4, tile_delay=1.5, sleep=sleeps.append)

    assert service.recognize(image) == []
    assert len(client.calls) > 1
    assert sleeps == [1.5] * (len(client.calls) - 1)


def test_failed_tile_aborts_run():
    image = make_noise_image(200, 600)
    failure = OcrCallResult.from_payload({"OCRExitCode": 4, "ErrorMessage": "Timed out"})
    client = FakeOcrClient(ok_result([]), failure, ok_result([]))
    service = TiledOcrService(client, tile_size_threshold=len(image) // 4, tile_delay=0)

    with pytest.raises(OcrProviderError) as exc:
        service.recognize(image)

    assert exc.value.tile_index == 1
    assert exc.value.exit_code == 4
    assert len(client.calls) == 2


def test_tile_coordinates_shift_and_overlap_duplicates_drop():
    image = make_noise_image(200, 600)
    service = TiledOcrService(FakeOcrClient(ok_result([])), tile_size_threshold=len(image) // 4, tile_delay=0)
    tiles = create_adaptive_tiles(image, service.tile_size_threshold, service.tile_overlap)
    first, second = tiles[0], tiles[1]

    # A word inside the shared band, seen by both tiles, plus one unique word per tile
    band_y = second.start_y + 2
    results = [
        ok_result([("top", 5, 5, 20, 10), ("겹침", 50, band_y - first.start_y, 30, 6)]),
        ok_result([("겹침", 51, band_y - second.start_y + 1, 30, 6), ("next", 5, second.height - 12, 20, 10)]),
    ] + [ok_result([])] * (len(tiles) - 2)
    service.client = FakeOcrClient(*results)

    fragments = service.recognize(image)

    assert [f.text for f in fragments] == ["top", "겹침", "next"]
    overlap_word = fragments[1]
    assert overlap_word.tile_index == 0
    assert overlap_word.bbox.y == band_y
    assert fragments[2].bbox.y == second.start_y + second.height - 12


def test_recognize_writes_trace(tmp_path):
    trace = DebugTrace(tmp_path, "job-1")
    service = TiledOcrService(FakeOcrClient(ok_result([("말", 1, 1, 5, 5)])), tile_delay=0)

    service.recognize(make_image(20, 20), trace)

    names = {p.name for p in (tmp_path / "job-1").iterdir()}
    assert {"tiles-metadata.json", "tile-0.png", "tile-0-ocr-raw.json",
            "tile-0-ocr-parsed.json", "tile-0-ocr-adjusted.json", "ocr-combined.json"} <= names


def test_upscaled_coordinates_map_back_to_original_image():
    client = FakeOcrClient(ok_result([("작은", 40, 60, 20, 10)]))
    service = TiledOcrService(client, tile_delay=0, upscale_factor=2.0)

    fragments = service.recognize(make_image(50, 40))

    assert image_size(client.calls[0]) == (100, 80)
    assert fragments[0].bbox.to_dict() == {"x": 20.0, "y": 30.0, "width": 10.0, "height": 5.0}


def test_parse_tolerates_null_coordinates_and_odd_entries():
    payload = {
        "OCRExitCode": 1,
        "ParsedResults": [
            "garbage",
            {"TextOverlay": {"Lines": [
                "garbage",
                {"Words": ["garbage", {"WordText": "널", "Left": None, "Top": 5, "Width": None, "Height": 8}]},
            ]}},
        ],
    }

    fragments = parse_ocr_response(payload)

    assert [f.text for f in fragments] == ["널"]
    assert fragments[0].bbox.to_dict() == {"x": 0.0, "y": 5.0, "width": 0.0, "height": 8.0}
