"""CLI entrypoint for Study Grounding."""

from __future__ import annotations

import json
import mimetypes
import os
from pathlib import Path
from typing import Optional

import requests
import typer

app = typer.Typer(name="sgr", help="Study Grounding command-line interface")

DEFAULT_HOST = "http://127.0.0.1:8000"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("SGR_HOST")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _resolve_user(override: Optional[str]) -> str:
    user = override or os.environ.get("SGR_USER")
    if not user:
        typer.echo("A user id is required (--user or SGR_USER)", err=True)
        raise typer.Exit(code=2)
    return user


def _request(method: str, path: str, user: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    resp = requests.request(method, url, timeout=300, headers={"X-User-Id": user}, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


@app.command()
def upload(
    study: str = typer.Option(..., "--study", help="Study identifier"),
    files: list[Path] = typer.Argument(..., help="Documents to upload"),
    user: Optional[str] = typer.Option(None, "--user", help="Caller user id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Upload one document, or several as a batch."""
    user_id = _resolve_user(user)
    paths = [path.expanduser() for path in files]
    parts = [
        (
            "file" if len(paths) == 1 else "files",
            (path.name, path.read_bytes(), mimetypes.guess_type(path.name)[0] or "application/octet-stream"),
        )
        for path in paths
    ]
    endpoint = "/documents" if len(paths) == 1 else "/upload/batch"
    resp = _request("POST", endpoint, user_id, host=host, data={"study_id": study}, files=parts)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def search(
    q: str = typer.Argument(..., help="Query text"),
    study: str = typer.Option(..., "--study", help="Study identifier"),
    limit: int = typer.Option(5, "--limit", help="Number of results to return"),
    min_similarity: float = typer.Option(0.1, "--min-similarity", help="Similarity threshold"),
    document: Optional[list[str]] = typer.Option(None, "--document", help="Restrict to these document ids"),
    raw: bool = typer.Option(False, "--raw", help="Print the JSON response"),
    user: Optional[str] = typer.Option(None, "--user", help="Caller user id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Search a study's documents."""
    payload: dict[str, object] = {
        "study_id": study,
        "query": q,
        "limit": limit,
        "min_similarity": min_similarity,
    }
    if document:
        payload["document_ids"] = list(document)
    resp = _request("POST", "/search", _resolve_user(user), host=host, json=payload)
    body = resp.json()
    typer.echo(json.dumps(body, indent=2) if raw else body["formatted"])


@app.command()
def citations(
    message_id: str = typer.Argument(..., help="Message identifier"),
    user: Optional[str] = typer.Option(None, "--user", help="Caller user id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show the citation map stored with a message."""
    resp = _request("GET", f"/citations/{message_id}", _resolve_user(user), host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    app()
