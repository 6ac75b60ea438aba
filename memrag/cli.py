"""
Command-line interface for the memory-augmented multimodal assistant.

Provides commands for serving the API, chatting, ingesting media, and
managing stored memories.
"""

import json
import mimetypes
from pathlib import Path
from typing import Optional

import click
import uvicorn

from .api.server import create_app
from .config import ConfigManager
from .errors import MemragError
from .logging_utils import setup_logging
from .models import MediaAsset, Modality
from .services import ServiceContainer


def _services(ctx) -> ServiceContainer:
    """Build services on first use so config-only commands need no credentials."""
    if ctx.obj.get('services') is None:
        try:
            ctx.obj['services'] = ServiceContainer.from_config(ctx.obj['config'])
        except MemragError as e:
            raise click.ClickException(e.message)
    return ctx.obj['services']


def _read_asset(path: str) -> MediaAsset:
    file_path = Path(path)
    mime_type, _ = mimetypes.guess_type(file_path.name)
    return MediaAsset(
        data=file_path.read_bytes(),
        mime_type=mime_type or 'application/octet-stream',
        name=file_path.name
    )


def _report_side_effects(result) -> None:
    side_effects = result.side_effects
    if side_effects.upload_error:
        click.echo(f"Upload failed: {side_effects.upload_error}", err=True)
    if side_effects.memory_error:
        click.echo(f"Memory not saved: {side_effects.memory_error}", err=True)
    elif side_effects.memory_saved:
        click.echo("Saved to memory.")


@click.group()
@click.option('--env-file', '-e', type=click.Path(exists=True), help='Path to a .env file')
@click.pass_context
def cli(ctx, env_file: Optional[str]):
    """Memory-augmented multimodal assistant CLI."""
    ctx.ensure_object(dict)

    config_manager = ConfigManager(env_file)
    try:
        ctx.obj['config'] = config_manager.load_config()
    except MemragError as e:
        raise click.ClickException(e.message)
    ctx.obj['config_manager'] = config_manager
    setup_logging(ctx.obj['config'].logging)


@cli.command()
@click.option('--host', default=None, help='Bind address (defaults to API_HOST)')
@click.option('--port', default=None, type=int, help='Bind port (defaults to API_PORT)')
@click.pass_context
def serve(ctx, host: Optional[str], port: Optional[int]):
    """Run the HTTP API server."""
    config = ctx.obj['config']
    app = create_app(_services(ctx))
    uvicorn.run(app, host=host or config.api.host, port=port or config.api.port, log_config=None)


@cli.command()
@click.argument('message')
@click.option('--no-memory', is_flag=True, help='Do not retrieve or store memories')
@click.pass_context
def chat(ctx, message: str, no_memory: bool):
    """Send one chat message, grounded on stored memories."""
    services = _services(ctx)
    try:
        result = services.memory.chat_with_context(message, use_memory=not no_memory)
    except MemragError as e:
        raise click.ClickException(e.message)

    click.echo(result.response)
    if len(result.context):
        click.echo(f"\n({len(result.context)} memories used)")


@cli.command()
@click.argument('content')
@click.option('--type', '-t', 'modality', default='text',
              type=click.Choice([m.value for m in Modality]), help='Memory modality')
@click.pass_context
def remember(ctx, content: str, modality: str):
    """Store a memory."""
    services = _services(ctx)
    try:
        memory_id = services.memory.store(content, modality)
    except MemragError as e:
        raise click.ClickException(e.message)
    click.echo(f"Stored memory {memory_id}")


@cli.command(name='import')
@click.argument('jsonl_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--batch-size', default=32, help='Memories embedded per request')
@click.pass_context
def import_memories(ctx, jsonl_path: str, batch_size: int):
    """Bulk-import memories from a JSONL file of {content, type, metadata} lines."""
    services = _services(ctx)

    entries = []
    with open(jsonl_path, 'r', encoding='utf-8') as f:
        for line_number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                item = json.loads(line)
            except json.JSONDecodeError as e:
                raise click.ClickException(f"Line {line_number}: invalid JSON ({e.msg})")
            entries.append((item.get('content', ''), item.get('type', 'general'), item.get('metadata')))

    imported = 0
    try:
        for start in range(0, len(entries), batch_size):
            imported += len(services.memory.store_many(entries[start:start + batch_size]))
    except MemragError as e:
        raise click.ClickException(f"Import stopped after {imported} memories: {e.message}")
    click.echo(f"Imported {imported} memories")


@cli.command()
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.argument('question')
@click.option('--save/--no-save', default=False, help='Remember the question and answer')
@click.pass_context
def image(ctx, path: str, question: str, save: bool):
    """Ask a question about an image."""
    services = _services(ctx)
    try:
        result = services.image.ingest(_read_asset(path), question, save_to_memory=save)
    except MemragError as e:
        raise click.ClickException(e.message)

    click.echo(result.response)
    if result.image_url:
        click.echo(f"Image URL: {result.image_url}")
    _report_side_effects(result)


@cli.command()
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--question', '-q', default=None, help='Question about the audio')
@click.option('--save/--no-save', default=False, help='Remember the transcript')
@click.pass_context
def audio(ctx, path: str, question: Optional[str], save: bool):
    """Transcribe an audio file and optionally answer a question about it."""
    services = _services(ctx)
    try:
        result = services.audio.ingest(_read_asset(path), question, save_to_memory=save)
    except MemragError as e:
        raise click.ClickException(e.message)

    click.echo(f"File size: {result.file_size_mb}MB")
    click.echo(f"Transcript: {result.transcript}")
    if result.answer is not None:
        click.echo(f"Answer: {result.answer}")
    _report_side_effects(result)


@cli.command()
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.argument('question')
@click.option('--transcript', default=None, help='Transcript of the video audio track')
@click.option('--save/--no-save', default=True, help='Remember the question and answer')
@click.pass_context
def video(ctx, path: str, question: str, transcript: Optional[str], save: bool):
    """Ask a question about a video; frames are sampled locally."""
    services = _services(ctx)
    try:
        result = services.video.ingest(
            question,
            asset=_read_asset(path),
            audio_transcript=transcript,
            save_to_memory=save
        )
    except MemragError as e:
        raise click.ClickException(e.message)

    for analysis in result.frame_analyses:
        click.echo(f"[{analysis.timestamp:.1f}s] {analysis.description}")
    click.echo(f"\nAnswer: {result.answer}")
    _report_side_effects(result)


@cli.command()
@click.pass_context
def stats(ctx):
    """Show memory statistics."""
    services = _services(ctx)
    try:
        result = services.memory.stats()
    except MemragError as e:
        raise click.ClickException(e.message)

    suffix = "" if result.exact else " (sampled)"
    click.echo(f"=== Memory Statistics{suffix} ===")
    click.echo(f"Total memories: {result.total_memories}")
    for modality, count in sorted(result.by_type.items()):
        click.echo(f"  {modality}: {count}")


@cli.command()
@click.option('--yes', is_flag=True, help='Skip the confirmation prompt')
@click.pass_context
def clear(ctx, yes: bool):
    """Delete every stored memory."""
    if not yes:
        click.confirm("Delete all stored memories?", abort=True)
    services = _services(ctx)
    try:
        result = services.memory.clear()
    except MemragError as e:
        raise click.ClickException(e.message)
    click.echo(result.message)


@cli.command()
@click.pass_context
def config_show(ctx):
    """Show current configuration."""
    config = ctx.obj['config']

    click.echo("=== Current Configuration ===")
    click.echo(f"Chat model: {config.inference.chat_model}")
    click.echo(f"Embedding model: {config.inference.embedding_model} ({config.vector_store.embedding_dimension}d)")
    click.echo(f"Transcription model: {config.inference.transcription_model}")
    click.echo(f"Credentials set: {bool(config.inference.account_id and config.inference.api_token)}")
    click.echo(f"Vector store: {config.vector_store.url or config.vector_store.path or ':memory:'}"
               f" / {config.vector_store.collection_name}")
    click.echo(f"Uploads: {'enabled' if config.uploads_enabled else 'disabled'}")
    click.echo(f"Transcription limit: {config.media.max_transcription_bytes / 1024 / 1024:.2f}MB")
    click.echo(f"API host: {config.api.host}:{config.api.port}")


def main():
    """Main CLI entry point."""
    cli()


if __name__ == '__main__':
    main()
