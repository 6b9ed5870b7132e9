"""CLI interface for villacms."""

import asyncio
import logging
import mimetypes
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from villacms.config import SiteConfig, load_config, merge_cli_overrides
from villacms.content import editing
from villacms.content.exchange import EXPORT_FILENAME, export_document
from villacms.content.session import ContentSession, PersistState, session_from_config
from villacms.errors import CapacityExceededError, InvalidFormatError
from villacms.shared.assistant import Assistant

T = TypeVar("T")

app = typer.Typer(
    name="villacms",
    help="Edit, preview, and publish the site content document.",
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from villacms import __version__

        console.print(f"villacms {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to a .villacms.toml file."),
    ] = None,
    storage_dir: Annotated[
        Optional[str],
        typer.Option("--storage-dir", help="Directory holding the live and draft slots."),
    ] = None,
    snapshot_url: Annotated[
        Optional[str],
        typer.Option("--snapshot-url", help="URL of the published content file."),
    ] = None,
    snapshot_path: Annotated[
        Optional[str],
        typer.Option("--snapshot-path", help="Path of the published content file."),
    ] = None,
    legacy_dir: Annotated[
        Optional[str],
        typer.Option("--legacy-dir", help="Directory with content from the old storage scheme."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Enable debug logging."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """villacms - local draft/live editing for the site content."""
    config = merge_cli_overrides(
        load_config(config_path),
        storage_dir=storage_dir,
        snapshot_url=snapshot_url,
        snapshot_path=snapshot_path,
        legacy_dir=legacy_dir,
        log_level="DEBUG" if verbose else None,
    )
    logging.basicConfig(
        level=config.logging.level.upper(),
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = config


def _run(
    ctx: typer.Context,
    action: Callable[[ContentSession], Awaitable[T]],
    *,
    authenticated: bool = True,
    preview: bool = False,
) -> T:
    """Open a session, run ``action`` against it, and close it."""
    config: SiteConfig = ctx.obj

    async def runner() -> T:
        session = session_from_config(config, authenticated=authenticated, preview=preview)
        async with session:
            result = await action(session)
        _report_draft_failure(session)
        return result

    return asyncio.run(runner())


def _report_draft_failure(session: ContentSession) -> None:
    if session.draft_state is not PersistState.FAILED:
        return
    error = session.last_error
    if isinstance(error, CapacityExceededError):
        console.print(f"[red]Error:[/red] {error}")
    else:
        console.print(f"[red]Error:[/red] Failed to save draft: {error}")
    raise typer.Exit(1)


@app.command()
def status(
    ctx: typer.Context,
    preview: Annotated[bool, typer.Option("--preview", help="Resolve as a preview link.")] = False,
    public: Annotated[bool, typer.Option("--public", help="Resolve as a public visitor.")] = False,
) -> None:
    """Show the viewer mode and whether the draft has unpublished changes."""

    async def action(session: ContentSession) -> None:
        table = Table(title="Content status")
        table.add_column("Field")
        table.add_column("Value")
        table.add_row("Mode", str(session.mode))
        table.add_row("Dirty", "yes" if session.dirty else "no")
        table.add_row("Stored draft", "yes" if session.has_stored_draft else "no")
        table.add_row("Draft state", str(session.draft_state))
        doc = session.effective
        if doc is not None:
            photos = sum(1 for _ in doc.iter_photos())
            table.add_row("Gallery sections", str(len(doc.gallery)))
            table.add_row("Photos", str(photos))
            table.add_row("FAQs", str(len(doc.faqs)))
        console.print(table)

    _run(ctx, action, authenticated=not (preview or public), preview=preview)


@app.command()
def show(
    ctx: typer.Context,
    preview: Annotated[bool, typer.Option("--preview", help="Show what a preview link shows.")] = False,
    draft: Annotated[bool, typer.Option("--draft", help="Show the editor's draft.")] = False,
) -> None:
    """Print the document a viewer would see, as JSON."""

    async def action(session: ContentSession) -> bytes:
        doc = session.draft if draft else session.effective
        return export_document(doc)

    typer.echo(_run(ctx, action, authenticated=draft, preview=preview).decode("utf-8"))


@app.command("export")
def export_cmd(
    ctx: typer.Context,
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="File to write the exported content to."),
    ] = Path(EXPORT_FILENAME),
) -> None:
    """Export the draft to a file for publishing by file replacement."""

    async def action(session: ContentSession) -> bytes:
        return session.export_bytes()

    payload = _run(ctx, action)
    output.write_bytes(payload)
    console.print(f"[green]Exported content to {output}[/green]")


@app.command("import")
def import_cmd(
    ctx: typer.Context,
    file: Annotated[Path, typer.Argument(help="Content file to import.", exists=True, dir_okay=False)],
) -> None:
    """Import a content file as the new draft."""
    data = file.read_bytes()

    async def action(session: ContentSession) -> None:
        session.import_bytes(data)

    try:
        _run(ctx, action)
    except InvalidFormatError as exc:
        console.print(f"[red]Error:[/red] Failed to import content: {exc}")
        raise typer.Exit(1)
    console.print("[green]Content imported.[/green] Review it, then run 'villacms publish'.")


@app.command()
def publish(ctx: typer.Context) -> None:
    """Make the draft live."""

    async def action(session: ContentSession) -> bool | None:
        if not session.dirty:
            return None
        ok = await session.publish()
        if not ok:
            console.print(f"[red]Error:[/red] Publish failed: {session.last_error}")
        return ok

    result = _run(ctx, action)
    if result is None:
        console.print("[yellow]Nothing to publish.[/yellow]")
    elif result:
        console.print("[green]Published.[/green]")
    else:
        raise typer.Exit(1)


@app.command()
def discard(
    ctx: typer.Context,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")] = False,
) -> None:
    """Throw away local changes and resync with the live content."""
    if not yes:
        typer.confirm(
            "Discard all local changes and sync with the live content? This cannot be undone.",
            abort=True,
        )

    async def action(session: ContentSession) -> bool:
        return await session.discard()

    if not _run(ctx, action):
        console.print("[red]Error:[/red] Could not discard the draft.")
        raise typer.Exit(1)
    console.print("[green]Local changes discarded.[/green]")


@app.command("faq-add")
def faq_add(
    ctx: typer.Context,
    question: Annotated[str, typer.Argument(help="The question.")],
    answer: Annotated[str, typer.Argument(help="The answer.")],
) -> None:
    """Add an FAQ entry to the draft."""

    async def action(session: ContentSession) -> None:
        session.update(editing.add_faq(session.draft, question, answer))

    _run(ctx, action)
    console.print("[green]FAQ added to the draft.[/green]")


@app.command("photo-add")
def photo_add(
    ctx: typer.Context,
    image: Annotated[Path, typer.Argument(help="Image file.", exists=True, dir_okay=False)],
    section: Annotated[str, typer.Option("--section", help="Gallery section id.")],
    sub_section: Annotated[str, typer.Option("--sub-section", help="Sub-section id.")],
    caption: Annotated[str, typer.Option("--caption", help="Photo caption.")] = "New Image",
    describe: Annotated[
        bool,
        typer.Option("--describe/--no-describe", help="Generate a description with the assistant."),
    ] = False,
) -> None:
    """Embed an image file into a gallery sub-section of the draft."""
    config: SiteConfig = ctx.obj
    data = image.read_bytes()
    mime_type = mimetypes.guess_type(image.name)[0] or "application/octet-stream"
    description = ""
    if describe:
        assistant = Assistant(model=config.assistant.model, api_key=config.assistant.api_key)
        description = assistant.describe_photo(data, mime_type)

    async def action(session: ContentSession) -> str:
        doc, photo_id = editing.add_photo(
            session.draft,
            section,
            sub_section,
            editing.embed_image(data, mime_type),
            caption=caption,
            description=description,
        )
        session.update(doc)
        return photo_id

    try:
        photo_id = _run(ctx, action)
    except KeyError as exc:
        console.print(f"[red]Error:[/red] Unknown gallery section or sub-section: {exc}")
        raise typer.Exit(1)
    console.print(f"[green]Added photo {photo_id}.[/green]")


@app.command()
def ask(
    ctx: typer.Context,
    question: Annotated[str, typer.Argument(help="A visitor question.")],
) -> None:
    """Answer a visitor question from the live FAQs."""
    config: SiteConfig = ctx.obj

    async def action(session: ContentSession) -> str:
        assistant = Assistant(model=config.assistant.model, api_key=config.assistant.api_key)
        faqs = session.effective.faqs if session.effective else []
        return assistant.answer_question(question, faqs)

    typer.echo(_run(ctx, action, authenticated=False))


if __name__ == "__main__":
    app()
