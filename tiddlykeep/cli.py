"""
CLI interface for tiddlykeep.

Usage:
    tiddlykeep init
    tiddlykeep serve --listen localhost:8080
    tiddlykeep ls --recipe system
    tiddlykeep get --tid 'GettingStarted'
    tiddlykeep put < tiddlers.json
"""

import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from typing_extensions import Annotated

from . import codec
from .api import TiddlyKeep, always_include_text, never_include_text
from .config import StoreConfig, get_store_path, load_or_create_config, save_config, validate_visibility
from .errors import InvalidReference, TiddlyKeepError, log_exception
from .logging_config import (
    configure_quiet_mode,
    configure_server_log,
    enable_debug_mode,
)
from .types import RECIPE_ALL, Tiddler, TiddlerRef, is_valid_blob_ref


# Configure quiet mode by default (suppress verbose library output)
# Set TIDDLYKEEP_VERBOSE=1 to enable debug mode via environment
if os.environ.get("TIDDLYKEEP_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"tiddlykeep {version('tiddlykeep')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_store_override: Optional[Path] = None


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="tiddlykeep",
    help="TiddlyWeb-compatible tiddler store on a content-addressed blob store.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="TIDDLYKEEP_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """TiddlyWeb-compatible tiddler store on a content-addressed blob store."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

BagOption = Annotated[
    Optional[str],
    typer.Option("--bag", help="Bag to look tiddlers up in (wins over --recipe)")
]

RecipeOption = Annotated[
    str,
    typer.Option("--recipe", help="Recipe to look tiddlers up in (all or system)")
]

ByRefOption = Annotated[
    bool,
    typer.Option("--by-ref", help="Arguments are node refs rather than titles")
]

HideNodesOption = Annotated[
    Optional[str],
    typer.Option(
        "--hide-nodes",
        help="Which created nodes are hidden: none, system or all (default: from config)"
    )
]

DefaultBagOption = Annotated[
    Optional[str],
    typer.Option("--default-bag", help="Bag for tiddlers that name none (default: from config)")
]

TitlesArgument = Annotated[
    list[str],
    typer.Argument(help="Tiddler titles (or node refs with --by-ref)")
]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

@contextmanager
def _cli_errors(context: str) -> Iterator[None]:
    """Turn store and input failures into ``Error: ...`` and exit status 1."""
    try:
        yield
    except (TiddlyKeepError, ValueError) as e:
        log_path = log_exception(e, context=f"tiddlykeep {context}")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise typer.Exit(1)


def _load_config() -> StoreConfig:
    store_path = get_store_path(_get_store_override())
    return load_or_create_config(store_path)


def _open_keep(config: StoreConfig) -> TiddlyKeep:
    """Open the store; callers close it with ``with``."""
    return TiddlyKeep.from_config(config)


def _get_keep() -> TiddlyKeep:
    """Open the configured store."""
    with _cli_errors("open"):
        return _open_keep(_load_config())


def _make_ref(arg: str, bag: Optional[str], recipe: str, by_ref: bool) -> TiddlerRef:
    ref = TiddlerRef(bag=bag or "", recipe=recipe)
    if by_ref:
        if not is_valid_blob_ref(arg):
            raise InvalidReference(f"invalid node ref: {arg!r}")
        ref.ref = arg
    else:
        ref.title = arg
    return ref


def _echo_json(data: bytes) -> None:
    typer.echo(data.decode("utf-8"))


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def serve(
    listen: Annotated[Optional[str], typer.Option(
        "--listen", help="HTTP listening address (default: from config)"
    )] = None,
    user: Annotated[Optional[str], typer.Option(
        "--user", help="Username reported by /status"
    )] = None,
    recipe: Annotated[Optional[str], typer.Option(
        "--recipe", help="Recipe reported by /status"
    )] = None,
    embed: Annotated[Optional[str], typer.Option(
        "--embed", help="Tiddlers to preload into the index: none, system or all"
    )] = None,
    hide_nodes: HideNodesOption = None,
    index_ref: Annotated[Optional[str], typer.Option(
        "--index-ref", help="Node ref of the TiddlyWiki index document"
    )] = None,
):
    """Run the TiddlyWeb-compatible server."""
    from .web import serve as run_server

    with _cli_errors("serve"):
        config = _load_config()
        if embed is not None:
            config.embed = validate_visibility("embed", embed)
        if hide_nodes is not None:
            config.hide_nodes = validate_visibility("hide_nodes", hide_nodes)
        if index_ref is not None:
            if not is_valid_blob_ref(index_ref):
                raise InvalidReference(f"invalid index ref: {index_ref!r}")
            config.index_ref = index_ref
        keep = _open_keep(config)

    configure_server_log()
    with keep:
        run_server(
            keep,
            listen or config.listen,
            user or config.username,
            recipe or config.recipe,
        )


@app.command("ls")
def list_cmd(
    fat: Annotated[bool, typer.Option("--fat", help="Include tiddler bodies")] = False,
    bag: BagOption = None,
    recipe: Annotated[Optional[str], typer.Option(
        "--recipe", help="Recipe to list (default: all)"
    )] = None,
):
    """List tiddlers as a JSON array."""
    text_filter = always_include_text if fat else never_include_text
    with _get_keep() as keep, _cli_errors("ls"):
        if bag and not recipe:
            tiddlers = keep.list_bag(bag, text_filter)
        else:
            tiddlers = keep.list_recipe(recipe or RECIPE_ALL, text_filter)
    _echo_json(codec.encode_json_list(tiddlers))


@app.command()
def get(
    titles: TitlesArgument,
    bag: BagOption = None,
    recipe: RecipeOption = RECIPE_ALL,
    by_ref: ByRefOption = False,
    tid: Annotated[bool, typer.Option("--tid", help="Print .tid text instead of JSON")] = False,
):
    """Get tiddlers by title."""
    tiddlers = []
    with _get_keep() as keep, _cli_errors("get"):
        for arg in titles:
            tiddlers.append(keep.get(_make_ref(arg, bag, recipe, by_ref), always_include_text))

    if tid:
        typer.echo("\n\n".join(codec.encode_text(t).decode("utf-8") for t in tiddlers))
    else:
        _echo_json(codec.encode_json_list(tiddlers))


@app.command()
def put(
    default_bag: DefaultBagOption = None,
    hide_nodes: HideNodesOption = None,
):
    """Put tiddlers from a JSON array on stdin."""
    with _cli_errors("put"):
        config = _load_config()
        if hide_nodes is not None:
            config.hide_nodes = validate_visibility("hide_nodes", hide_nodes)
        bag = default_bag or config.default_bag
        tiddlers = codec.decode_json_list(sys.stdin.read())
        with _open_keep(config) as keep:
            for t in tiddlers:
                if not t.bag:
                    t.bag = bag
                keep.put(t)
    typer.echo(f"Stored {len(tiddlers)} tiddler(s)", err=True)


@app.command()
def edit(
    titles: TitlesArgument,
    bag: BagOption = None,
    recipe: RecipeOption = RECIPE_ALL,
    by_ref: ByRefOption = False,
):
    """Edit tiddlers as .tid text using $EDITOR."""
    with _get_keep() as keep, _cli_errors("edit"):
        for arg in titles:
            old = keep.get(_make_ref(arg, bag, recipe, by_ref), always_include_text)
            edited = typer.edit(codec.encode_text(old).decode("utf-8"), extension=".tid")
            if edited is None:
                typer.echo(f"{old.title}: unchanged", err=True)
                continue
            new: Tiddler = codec.decode_text(edited)
            new.title = old.title
            new.bag = old.bag
            new.recipe = old.recipe
            keep.put(new)


@app.command()
def delete(
    titles: TitlesArgument,
    bag: BagOption = None,
    recipe: RecipeOption = RECIPE_ALL,
    by_ref: ByRefOption = False,
):
    """Delete tiddlers by title."""
    with _get_keep() as keep, _cli_errors("delete"):
        for arg in titles:
            keep.delete(_make_ref(arg, bag, recipe, by_ref))


@app.command()
def init(
    default_bag: DefaultBagOption = None,
    hide_nodes: HideNodesOption = None,
):
    """Install the TiddlyWiki index and the TiddlyWeb plugin."""
    from .bootstrap import initialize

    with _cli_errors("init"):
        config = _load_config()
        if default_bag is not None:
            config.default_bag = default_bag
        if hide_nodes is not None:
            config.hide_nodes = validate_visibility("hide_nodes", hide_nodes)
        save_config(config)
        with _open_keep(config) as keep:
            initialize(keep)
    typer.echo(f"Initialized {config.path}", err=True)


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        log_path = log_exception(e, context="tiddlykeep CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
