"""CLI entrypoint for docvector."""

from __future__ import annotations

import json
import os
from typing import List, Optional

import requests
import typer

app = typer.Typer(name="docvec", help="docvector command-line interface")

DEFAULT_HOST = "http://127.0.0.1:5173"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip('/')
    env_host = os.environ.get("DOCVEC_HOST")
    if env_host:
        return env_host.rstrip('/')
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    try:
        resp = requests.request(method, url, timeout=600, **kwargs)
    except requests.ConnectionError as exc:
        typer.echo(f"Could not reach docvector at {base}: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _echo(resp: requests.Response) -> None:
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def index(
    force: bool = typer.Option(False, "--force", help="Re-index files even if unchanged"),
    background: bool = typer.Option(False, "--background", help="Return immediately"),
    file: Optional[str] = typer.Option(None, "--file", help="Re-index a single project-relative file"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Index the project, or one file."""
    if file:
        _echo(_request("POST", "/index/file", host=host, json={"path": file}))
        return
    _echo(_request("POST", "/index", host=host, json={"force": force, "background": background}))


@app.command()
def status(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show indexer status."""
    _echo(_request("GET", "/index/status", host=host))


@app.command()
def pause(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Pause a running index."""
    _echo(_request("POST", "/index/pause", host=host))


@app.command()
def resume(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Resume a paused index."""
    _echo(_request("POST", "/index/resume", host=host))


@app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Drop every collection."""
    if not yes:
        typer.confirm("Drop the whole index?", abort=True)
    _echo(_request("POST", "/clear", host=host, json={"confirm": True}))


@app.command()
def query(
    q: str = typer.Argument(..., help="Query text"),
    k: Optional[int] = typer.Option(None, "--k", help="Number of results to return"),
    min_score: Optional[float] = typer.Option(None, "--min", help="Minimum score"),
    types: Optional[List[str]] = typer.Option(None, "--type", help="Restrict to content types"),
    levels: Optional[List[str]] = typer.Option(None, "--level", help="Restrict to hierarchy levels"),
    path: Optional[str] = typer.Option(None, "--path", help="Path substring filter"),
    lang: Optional[str] = typer.Option(None, "--lang", help="Language filter"),
    alpha: Optional[float] = typer.Option(None, "--alpha", help="Vector weight in hybrid scoring"),
    rerank: Optional[bool] = typer.Option(None, "--rerank/--no-rerank", help="Force reranking on/off"),
    hybrid: Optional[bool] = typer.Option(None, "--hybrid/--no-hybrid", help="Force hybrid search on/off"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Search the index."""
    payload: dict[str, object] = {"q": q}
    options = {
        "k": k,
        "min": min_score,
        "types": types or None,
        "levels": levels or None,
        "path": path,
        "lang": lang,
        "alpha": alpha,
        "rerank": rerank,
        "hybrid": hybrid,
    }
    payload.update({key: value for key, value in options.items() if value is not None})
    _echo(_request("POST", "/search", host=host, json=payload))


@app.command()
def similar(
    chunk_id: str = typer.Argument(..., help="Chunk identifier"),
    k: int = typer.Option(5, "--k", help="Number of results to return"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Find chunks similar to a stored chunk."""
    _echo(_request("POST", "/similar", host=host, json={"chunk_id": chunk_id, "k": k}))


@app.command()
def incoherence(
    path: Optional[str] = typer.Argument(None, help="File to analyze; the whole project when omitted"),
    min_severity: float = typer.Option(0.0, "--min-severity", help="Drop issues below this severity"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Maximum issues per file"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Report where docs and code disagree."""
    payload: dict[str, object] = {"path": path, "min_severity": min_severity}
    if limit is not None:
        payload["limit"] = limit
    _echo(_request("POST", "/incoherence", host=host, json=payload))


@app.command()
def stats(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show collection statistics."""
    _echo(_request("GET", "/stats", host=host))


if __name__ == "__main__":
    app()
