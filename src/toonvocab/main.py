# -*- coding: utf-8 -*-
import sys
import click
from pathlib import Path
from typing import List
from tqdm import tqdm

from toonvocab.anki import AnkiDeckBuilder
from toonvocab.config import SUPPORTED_EXTENSIONS, load_settings
from toonvocab.db import GRAMMAR, VOCABULARY, VocabularyStore
from toonvocab.errors import ExtractionEmptyError, PipelineError, StageError
from toonvocab.image_processing import natural_sort_key, stitch_images
from toonvocab.log import configure_logging
from toonvocab.pipeline import ChapterSubmission, PipelineRun, VocabularyPipeline


def collect_input_files(input_paths) -> List[Path]:
    """
    Expands directories into their images, naturally sorted by filename.
    Explicit files are kept in the order given.
    """
    files: List[Path] = []
    for p in input_paths:
        path = Path(p).resolve()
        if path.is_dir():
            images = [c for c in path.iterdir() if c.is_file() and c.suffix.lower() in SUPPORTED_EXTENSIONS]
            files.extend(sorted(images, key=lambda c: natural_sort_key(c.name)))
        else:
            files.append(path)
    return files


def _is_nothing_found(error: Exception) -> bool:
    if isinstance(error, ExtractionEmptyError):
        return True
    return isinstance(error, StageError) and error.is_empty


@click.group()
@click.option('--env-file', type=click.Path(dir_okay=False), default=None, help='Read settings from this .env file.')
@click.option('--json-logs', is_flag=True, help='Emit logs as JSON lines.')
@click.pass_context
def cli(ctx, env_file, json_logs):
    """
    ToonVocab: Build Korean vocabulary lists from webtoon chapters.

    Screenshots are stitched, OCR'd in tiles, grouped into dialogue and
    sent to Gemini; the resulting words and grammar are stored per chapter.
    """
    settings = load_settings(Path(env_file) if env_file else None)
    configure_logging(settings.log_level, json_logs=json_logs)
    ctx.obj = settings


@cli.command('init-db')
@click.pass_obj
def init_db(settings):
    """Create the database tables."""
    store = VocabularyStore(settings.database_url)
    try:
        store.create_schema()
    finally:
        store.dispose()
    click.echo(f"✅ Schema ready at {settings.database_url}")


@cli.command('add-series')
@click.argument('slug')
@click.argument('name')
@click.pass_obj
def add_series(settings, slug, name):
    """Register a series so chapters can be filed under SLUG."""
    store = VocabularyStore(settings.database_url)
    try:
        store.create_schema()
        series_id = store.ensure_series(slug, name)
    finally:
        store.dispose()
    click.echo(f"✅ Series '{slug}' has id {series_id}")


@cli.command()
@click.argument('input_paths', nargs=-1, required=True, type=click.Path(exists=True))
@click.option('--series', 'series_slug', required=True, help='Slug of an existing series.')
@click.option('--chapter', 'chapter_number', required=True, type=click.IntRange(min=1), help='Chapter number.')
@click.option('--title', default=None, help='Chapter title (defaults to "Chapter N").')
@click.option('--link', default=None, help='URL of the chapter.')
@click.option('--debug-dir', type=click.Path(file_okay=False), default=None, help='Save every intermediate artifact here.')
@click.option('--grouping-threshold', type=float, default=None, help='Vertical gap (pixels) that starts a new dialogue line.')
@click.option('--anki', 'anki_path', type=click.Path(dir_okay=False), default=None, help='Also export the chapter as an Anki deck.')
@click.pass_obj
def process(settings, input_paths, series_slug, chapter_number, title, link, debug_dir, grouping_threshold, anki_path):
    """
    Extract vocabulary from one chapter.

    INPUT_PATHS: a zip of screenshots, a single image, or image files/directories.
    """
    if debug_dir:
        settings.debug_dir = Path(debug_dir)
    if grouping_threshold is not None:
        settings.grouping_threshold = grouping_threshold

    source_files = collect_input_files(input_paths)
    if not source_files:
        click.echo("❌ No input files found.", err=True)
        sys.exit(2)

    click.echo(f"📸 Reading {len(source_files)} file(s)...")
    buffers = [path.read_bytes() for path in tqdm(source_files, desc="Reading Inputs")]

    store = VocabularyStore(settings.database_url)
    try:
        store.create_schema()
        pipeline = VocabularyPipeline(settings, store)
        run = PipelineRun()
        try:
            submission = ChapterSubmission(series_slug, chapter_number, title, link)
            if len(buffers) == 1:
                result = pipeline.process_submission(buffers[0], submission, run=run)
            else:
                result = pipeline.process_image(stitch_images(buffers), submission, run=run)
        except PipelineError as e:
            if _is_nothing_found(e):
                click.echo(f"🔍 Nothing to learn here: {e}", err=True)
                sys.exit(3)
            click.echo(f"❌ {e}", err=True)
            sys.exit(1)

        click.echo("\n" + "=" * 60)
        click.echo("📊 Chapter Summary:")
        click.echo(f"   Job: {run.job_id}")
        click.echo(f"   Dialogue lines: {result.dialogue_lines_count}")
        click.echo(f"   Words extracted: {result.words_extracted} "
                   f"({result.new_words_inserted} new, {result.total_words_in_chapter} in chapter)")
        click.echo(f"   Grammar extracted: {result.grammar_extracted} "
                   f"({result.new_grammar_inserted} new, {result.total_grammar_in_chapter} in chapter)")
        click.echo("=" * 60)

        if anki_path:
            builder = AnkiDeckBuilder()
            builder.add_items(store.chapter_items(result.chapter_id, VOCABULARY.name), VOCABULARY.name)
            builder.add_items(store.chapter_items(result.chapter_id, GRAMMAR.name), GRAMMAR.name)
            if builder.save_package(Path(anki_path)):
                click.echo(f"\n✅ Deck saved to: {anki_path}")
            else:
                click.echo("\n⚠️ Deck is empty, nothing saved")
    finally:
        store.dispose()


if __name__ == '__main__':
    cli()
