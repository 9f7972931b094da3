"""
TiddlyWeb-compatible HTTP server.

Serves the TiddlyWiki bootstrap document at ``/`` and the subset of the
TiddlyWeb API that the TiddlyWeb sync adaptor uses: status, skinny/fat
tiddler listings, single tiddler fetch with ETags, put and delete.
"""

import io
import json
import logging
import time
from urllib.parse import quote_plus

from flask import Flask, Response, g, request
from werkzeug.exceptions import HTTPException

from . import codec
from .api import always_include_text, never_include_text
from .errors import TiddlyKeepError
from .protocol import TiddlyServerProtocol
from .types import TiddlerRef

logger = logging.getLogger(__name__)

JSON_MIMETYPE = "application/json"


def construct_etag(keep: TiddlyServerProtocol, ref: TiddlerRef) -> str:
    """
    ETag of a tiddler: ``"{bag}/{escaped title}/{revision}:{node}"``.

    Resolves ``ref`` first, so the bag and revision come from the node.
    """
    ref = keep.resolve_ref(ref, create_missing=False)
    unix = int(ref.revision.timestamp()) if ref.revision is not None else 0
    return f'"{ref.bag}/{quote_plus(ref.title)}/{unix}:{ref.ref}"'


def _text_filter():
    return always_include_text if request.args.get("fat") == "1" else never_include_text


def _json_response(data: bytes, etag: str = "") -> Response:
    resp = Response(data, mimetype=JSON_MIMETYPE)
    if etag:
        resp.headers["Etag"] = etag
    return resp


def create_app(keep: TiddlyServerProtocol, username: str, recipe: str) -> Flask:
    """Create the Flask application serving ``keep``."""
    app = Flask(__name__, static_folder=None)

    @app.before_request
    def start_timer():
        g.start = time.monotonic()

    @app.after_request
    def log_request(response):
        elapsed = time.monotonic() - g.get("start", time.monotonic())
        error = g.get("error")
        if error:
            logger.info("%s: %s [%.3fs]: %s", request.method, request.path, elapsed, error)
        else:
            logger.info("%s: %s [%.3fs]", request.method, request.path, elapsed)
        return response

    @app.errorhandler(Exception)
    def handle_error(e):
        if isinstance(e, HTTPException):
            return e
        if isinstance(e, TiddlyKeepError):
            status = e.status_code
        else:
            logger.exception("Unhandled error on %s %s", request.method, request.path)
            status = 500
        g.error = e
        return Response(f"{e}\n", status=status, mimetype="text/plain")

    # TiddlyWiki index
    @app.route("/", methods=["GET", "HEAD"])
    def index():
        if request.method == "HEAD":
            return Response(b"", mimetype="text/html")
        buf = io.BytesIO()
        keep.generate_index(buf)
        return Response(buf.getvalue(), mimetype="text/html")

    # TiddlyWeb status
    @app.route("/status", methods=["GET"])
    def status():
        body = json.dumps({"username": username, "space": {"recipe": recipe}})
        return Response(body, mimetype=JSON_MIMETYPE)

    # Listings
    @app.route("/bags/<bag>/tiddlers.json", methods=["GET"])
    def list_bag(bag):
        return _json_response(codec.encode_json_list(keep.list_bag(bag, _text_filter())))

    @app.route("/recipes/<recipe_name>/tiddlers.json", methods=["GET"])
    def list_recipe(recipe_name):
        return _json_response(codec.encode_json_list(keep.list_recipe(recipe_name, _text_filter())))

    # Single tiddlers
    def _get_tiddler(ref: TiddlerRef):
        etag = construct_etag(keep, ref)
        if request.headers.get("If-None-Match") == etag:
            return Response(status=304)
        t = keep.get(ref, always_include_text)
        if ref.recipe:
            t.recipe = ref.recipe
        return _json_response(codec.encode_json(t), etag)

    @app.route("/bags/<bag>/tiddlers/<path:title>", methods=["GET"])
    def get_bag_tiddler(bag, title):
        return _get_tiddler(TiddlerRef(title=title, bag=bag))

    @app.route("/recipes/<recipe_name>/tiddlers/<path:title>", methods=["GET"])
    def get_recipe_tiddler(recipe_name, title):
        return _get_tiddler(TiddlerRef(title=title, recipe=recipe_name))

    @app.route("/recipes/<recipe_name>/tiddlers/<path:title>", methods=["PUT"])
    def put_tiddler(recipe_name, title):
        t = codec.decode_json(request.get_data())
        t.title = title
        t.recipe = recipe_name
        # The URL names the tiddler; a node ref in the body must not
        # redirect the write elsewhere.
        t.ref = None
        keep.put(t)
        resp = Response(b"")
        resp.headers["Etag"] = construct_etag(keep, t.tiddler_ref)
        return resp

    @app.route("/bags/<bag>/tiddlers/<path:title>", methods=["DELETE"])
    def delete_tiddler(bag, title):
        keep.delete(TiddlerRef(title=title, bag=bag))
        return Response(b"")

    return app


def serve(keep: TiddlyServerProtocol, listen: str, username: str, recipe: str) -> None:
    """Run the threaded development server on ``host:port``."""
    host, _, port = listen.rpartition(":")
    app = create_app(keep, username, recipe)
    logger.info("Listening on %s", listen)
    app.run(host=host or "localhost", port=int(port), debug=False, threaded=True)
