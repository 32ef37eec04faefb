"""
CLI entrypoint for GrooveFinder.

Commands:
- serve: run the FastAPI service.
- search: search the catalog and print a table.
- recommend: build a recommendation seed and print the recommended tracks.
- check: verify catalog credentials and connectivity.
"""

from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table
import uvicorn

from .config import load_config
from .errors import GrooveFinderError
from .pipeline import recommend
from .profiles import create_profile_store
from .seeds import RecommendationQuery
from .spotify import CatalogClient, create_catalog_client


app = typer.Typer(help="GrooveFinder – music search and mood-tuned recommendations.")


def _open_catalog() -> CatalogClient:
    return create_catalog_client(load_config())


def _artists(track: dict) -> str:
    return ", ".join(a.get("name", "") for a in track.get("artists") or [])


def _track_table(title: str, tracks: List[dict]) -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("#", justify="right", style="cyan", no_wrap=True)
    table.add_column("Track", style="bold")
    table.add_column("Artist", style="magenta")
    table.add_column("Album")
    table.add_column("Popularity", justify="right")
    table.add_column("ID", style="dim")

    for idx, track in enumerate(tracks, start=1):
        album = track.get("album") or {}
        popularity = track.get("popularity")
        table.add_row(
            str(idx),
            track.get("name", ""),
            _artists(track),
            album.get("name", ""),
            "" if popularity is None else str(popularity),
            track.get("id", ""),
        )
    return table


@app.command("search")
def search(
    query: str = typer.Argument(..., help="Free-text search, e.g. 'daft punk'"),
    limit: int = typer.Option(10, "--limit", "-n", min=1, max=50, help="Number of tracks (1–50)."),
) -> None:
    """
    Search the catalog for tracks.
    """
    console = Console()
    catalog = _open_catalog()
    try:
        with console.status(f"[bold cyan]Searching for {query!r}...[/bold cyan]"):
            tracks = catalog.search(query, limit=limit)
    except GrooveFinderError as exc:
        console.print(f"[bold red]Search failed:[/bold red] {exc}")
        raise typer.Exit(1)
    finally:
        catalog.close()

    if not tracks:
        console.print("[bold yellow]No tracks found.[/bold yellow]")
        raise typer.Exit(0)

    console.print(_track_table(f"Search – {query!r}", tracks))


@app.command("recommend")
def recommend_cmd(
    mood: Optional[str] = typer.Option(None, "--mood", "-m", help="happy, sad, energetic, chill or focus."),
    genres: Optional[str] = typer.Option(None, "--genres", "-g", help="Comma-separated seed genres."),
    energy: Optional[float] = typer.Option(None, "--energy", min=0.0, max=1.0, help="Target energy (0–1)."),
    dance: Optional[float] = typer.Option(None, "--dance", min=0.0, max=1.0, help="Target danceability (0–1)."),
    user_id: Optional[str] = typer.Option(None, "--user-id", help="Apply this stored profile's preferences (mongo store only)."),
) -> None:
    """
    Build a recommendation seed and print the recommended tracks.
    """
    console = Console()
    cfg = load_config()
    if user_id and cfg.store.backend == "memory":
        console.print(
            "[bold yellow]Warning:[/bold yellow] --user-id needs GROOVEFINDER_STORE_BACKEND=mongo; "
            "the in-memory store starts empty, so no stored preferences will be applied."
        )
    catalog = create_catalog_client(cfg)
    store = create_profile_store(cfg) if user_id else None
    query = RecommendationQuery(
        seed_genres=genres,
        user_id=user_id,
        mood=mood,
        energy_level=energy,
        dance_level=dance,
    )

    try:
        with console.status("[bold cyan]Tuning recommendations...[/bold cyan]"):
            result = recommend(catalog, store, query)
    except GrooveFinderError as exc:
        console.print(f"[bold red]Recommendations failed:[/bold red] {exc}")
        raise typer.Exit(1)
    finally:
        catalog.close()
        if store is not None:
            store.close()

    applied = ", ".join(f"{k}={v}" for k, v in result.seed.to_dict().items())
    console.print(f"[bold cyan]Applied:[/bold cyan] {applied}")
    if not result.tracks:
        console.print("[bold yellow]No recommendations returned.[/bold yellow]")
        raise typer.Exit(0)

    console.print(_track_table("Recommendations", result.tracks))


@app.command("check")
def check() -> None:
    """
    Verify that catalog credentials work.
    """
    console = Console()
    cfg = load_config()
    console.print(
        f"Client ID: {'[green]Set[/green]' if cfg.spotify.client_id else '[red]MISSING[/red]'}  "
        f"Client secret: {'[green]Set[/green]' if cfg.spotify.client_secret else '[red]MISSING[/red]'}"
    )
    catalog = create_catalog_client(cfg)
    try:
        result = catalog.test_connection()
    finally:
        catalog.close()

    if result.get("success"):
        console.print(f"[black on green] OK [/] {result.get('message')} ({catalog.source})")
        return
    console.print(f"[black on red] FAILED [/] {result.get('error')}")
    raise typer.Exit(1)


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind the GrooveFinder API server to."),
    port: int = typer.Option(3000, help="Port to bind the GrooveFinder API server to."),
    reload: bool = typer.Option(False, help="Enable auto-reload (development only)."),
) -> None:
    """
    Run the GrooveFinder FastAPI service.

    Example:
        groovefinder serve --host 0.0.0.0 --port 3000
    """
    uvicorn.run(
        "groovefinder.api:app",
        host=host,
        port=port,
        reload=reload,
    )


if __name__ == "__main__":
    app()
