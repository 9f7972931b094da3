"""
Content store using SQLite.

A local stand-in for a Perkeep server, built from two pieces:
- a content-addressed blob map (``blobs``): identical bytes share one ref
  and are stored once;
- an append-only claim log (``claims``): every attribute change to a
  permanode is a signed claim blob, and a node's attributes are the
  replay of its claims in date order.

Permanodes and claims are themselves JSON schema blobs, so everything
the store knows is reachable through ``fetch_content``.  Nothing is ever
deleted: a tombstone claim hides a node from ``query`` and ``describe``.
"""

import hashlib
import hmac
import json
import logging
import secrets
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Sequence, Union

from .errors import NotFound, StoreError
from .query import Constraint
from .types import ClaimOp, NodeDescription, SearchResult

logger = logging.getLogger(__name__)

HASH_NAME = "sha224"
CLAIM_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# Claim type of a tombstone
DELETE_CLAIM = "delete"


def blob_ref(data: bytes) -> str:
    """Content address of ``data``."""
    return f"{HASH_NAME}-{hashlib.new(HASH_NAME, data).hexdigest()}"


def _canonical(schema: dict) -> bytes:
    return json.dumps(schema, sort_keys=True, separators=(",", ":")).encode("utf-8")


def sign_schema(schema: dict, key: bytes) -> bytes:
    """Serialize a schema blob with an HMAC-SHA256 ``camliSig``."""
    unsigned = {k: v for k, v in schema.items() if k != "camliSig"}
    sig = hmac.new(key, _canonical(unsigned), hashlib.sha256).hexdigest()
    return _canonical({**unsigned, "camliSig": sig})


def verify_schema(data: bytes, key: bytes) -> bool:
    """Check the ``camliSig`` of a signed schema blob."""
    try:
        schema = json.loads(data)
    except ValueError:
        return False
    if not isinstance(schema, dict) or not isinstance(schema.get("camliSig"), str):
        return False
    return hmac.compare_digest(sign_schema(schema, key), data)


@dataclass
class _NodeState:
    attrs: dict[str, list[str]] = field(default_factory=dict)
    mod_time: Optional[datetime] = None
    deleted: bool = False

    def apply(self, claim_type: str, attr: Optional[str], value: Optional[str]) -> None:
        if claim_type == DELETE_CLAIM:
            self.deleted = True
        elif claim_type == ClaimOp.SET.value:
            self.attrs[attr] = [value]
        elif claim_type == ClaimOp.ADD.value:
            values = self.attrs.setdefault(attr, [])
            if value not in values:
                values.append(value)
        elif claim_type == ClaimOp.DELETE.value:
            if value is None:
                self.attrs.pop(attr, None)
            else:
                values = [v for v in self.attrs.get(attr, []) if v != value]
                if values:
                    self.attrs[attr] = values
                else:
                    self.attrs.pop(attr, None)

    def describe(self, ref: str, attrs: Optional[Sequence[str]]) -> NodeDescription:
        if attrs is None:
            selected = {k: list(v) for k, v in self.attrs.items()}
        else:
            selected = {k: list(self.attrs[k]) for k in attrs if k in self.attrs}
        return NodeDescription(ref=ref, attrs=selected, mod_time=self.mod_time)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _format_date(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime(CLAIM_DATE_FORMAT)


def _parse_date(text: str) -> datetime:
    return datetime.strptime(text, CLAIM_DATE_FORMAT).replace(tzinfo=timezone.utc)


class SqliteContentStore:
    """
    SQLite-backed content-addressed store with permanodes.

    Safe to share between threads: all access to the connection is
    serialized.  Every SQLite failure surfaces as StoreError.
    """

    def __init__(
        self,
        store_path: Path,
        *,
        signer: str = "tiddlykeep",
        signing_key: Union[bytes, str, None] = None,
        timeout: float = 30.0,
    ):
        """
        Args:
            store_path: Path to SQLite database file
            signer: Identity recorded as ``camliSigner`` on every claim
            signing_key: HMAC key (bytes or hex string); random if omitted
            timeout: Seconds to wait on a locked database
        """
        self._conn: Optional[sqlite3.Connection] = None
        self._db_path = Path(store_path)
        self._signer = signer
        if signing_key is None:
            signing_key = secrets.token_bytes(32)
        elif isinstance(signing_key, str):
            signing_key = bytes.fromhex(signing_key)
        self._key = signing_key
        self._timeout = timeout
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self._db_path), timeout=self._timeout, check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row

            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS blobs (
                    ref TEXT PRIMARY KEY,
                    data BLOB NOT NULL,
                    size INTEGER NOT NULL
                )
            """)

            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS permanodes (
                    ref TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL
                )
            """)

            # Append-only: rows are inserted, never updated or deleted
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS claims (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    ref TEXT NOT NULL,
                    node TEXT NOT NULL,
                    claim_type TEXT NOT NULL,
                    attr TEXT,
                    value TEXT,
                    claim_date TEXT NOT NULL
                )
            """)

            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_claims_node
                ON claims(node, claim_date, seq)
            """)

            self._conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"cannot open content store {self._db_path}: {e}") from e

    @contextmanager
    def _locked(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._conn is None:
                raise StoreError("content store is closed")
            try:
                yield self._conn
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StoreError(f"content store: {e}") from e

    # -------------------------------------------------------------------------
    # Content
    # -------------------------------------------------------------------------

    def _put_blob(self, conn: sqlite3.Connection, data: bytes) -> str:
        ref = blob_ref(data)
        conn.execute(
            "INSERT OR IGNORE INTO blobs (ref, data, size) VALUES (?, ?, ?)",
            (ref, data, len(data)),
        )
        return ref

    def upload_content(self, data: bytes) -> str:
        """Store bytes under their content address.  Idempotent."""
        with self._locked() as conn:
            ref = self._put_blob(conn, bytes(data))
            conn.commit()
        return ref

    def fetch_content(self, ref: str) -> bytes:
        """
        Fetch a blob by ref.

        Raises:
            NotFound: if no blob has this ref
        """
        with self._locked() as conn:
            row = conn.execute("SELECT data FROM blobs WHERE ref = ?", (ref,)).fetchone()
        if row is None:
            raise NotFound(f"blob {ref} not found")
        return bytes(row["data"])

    # -------------------------------------------------------------------------
    # Permanodes and claims
    # -------------------------------------------------------------------------

    def allocate_node(self) -> str:
        """Create a new permanode and return its identity."""
        now = _now()
        schema = {
            "camliVersion": 1,
            "camliType": "permanode",
            "camliSigner": self._signer,
            "random": secrets.token_hex(16),
        }
        data = sign_schema(schema, self._key)
        with self._locked() as conn:
            ref = self._put_blob(conn, data)
            conn.execute(
                "INSERT OR IGNORE INTO permanodes (ref, created_at) VALUES (?, ?)",
                (ref, _format_date(now)),
            )
            conn.commit()
        logger.debug("Allocated permanode %s", ref)
        return ref

    def _claim_date(self, conn: sqlite3.Connection, node: str) -> str:
        """Now, but never earlier than the node's latest claim."""
        now = _format_date(_now())
        row = conn.execute(
            "SELECT MAX(claim_date) AS last FROM claims WHERE node = ?", (node,),
        ).fetchone()
        last = row["last"] if row is not None else None
        return max(now, last) if last else now

    def _append(
        self,
        node: str,
        claim_type: str,
        attr: Optional[str] = None,
        value: Optional[str] = None,
    ) -> str:
        with self._locked() as conn:
            known = conn.execute(
                "SELECT 1 FROM permanodes WHERE ref = ?", (node,),
            ).fetchone()
            if known is None:
                raise StoreError(f"unknown permanode {node}")

            claim_date = self._claim_date(conn, node)
            schema = {
                "camliVersion": 1,
                "camliType": "claim",
                "camliSigner": self._signer,
                "claimDate": claim_date,
                "claimType": claim_type,
            }
            if claim_type == DELETE_CLAIM:
                schema["target"] = node
            else:
                schema["permaNode"] = node
                schema["attribute"] = attr
                if value is not None:
                    schema["value"] = value

            ref = self._put_blob(conn, sign_schema(schema, self._key))
            conn.execute("""
                INSERT INTO claims (ref, node, claim_type, attr, value, claim_date)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (ref, node, claim_type, attr, value, claim_date))
            conn.commit()
        return ref

    def append_claim(
        self,
        node: str,
        attr: str,
        op: ClaimOp,
        value: Optional[str] = None,
    ) -> str:
        """
        Append a signed attribute claim.

        SET replaces all values of ``attr``; ADD appends ``value`` if
        absent; DELETE removes ``value``, or the whole attribute when
        ``value`` is None.

        Returns:
            Ref of the claim blob
        """
        op = ClaimOp(op)
        if op is not ClaimOp.DELETE and value is None:
            raise ValueError(f"{op.value} claim needs a value")
        return self._append(node, op.value, attr, value)

    def append_tombstone(self, node: str) -> str:
        """Append a delete claim hiding ``node`` from queries."""
        return self._append(node, DELETE_CLAIM)

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    def _load_states(
        self,
        conn: sqlite3.Connection,
        node: Optional[str] = None,
    ) -> dict[str, _NodeState]:
        """Replay claims into per-node attribute state."""
        if node is None:
            nodes = conn.execute("SELECT ref FROM permanodes").fetchall()
            claims = conn.execute("""
                SELECT node, claim_type, attr, value, claim_date FROM claims
                ORDER BY node, claim_date, seq
            """).fetchall()
        else:
            nodes = conn.execute(
                "SELECT ref FROM permanodes WHERE ref = ?", (node,),
            ).fetchall()
            claims = conn.execute("""
                SELECT node, claim_type, attr, value, claim_date FROM claims
                WHERE node = ?
                ORDER BY claim_date, seq
            """, (node,)).fetchall()

        states = {row["ref"]: _NodeState() for row in nodes}
        for row in claims:
            state = states.get(row["node"])
            if state is None:
                continue
            state.apply(row["claim_type"], row["attr"], row["value"])
            state.mod_time = _parse_date(row["claim_date"])
        return states

    def query(
        self,
        constraint: Constraint,
        describe: Optional[Sequence[str]] = None,
    ) -> SearchResult:
        """
        Find live permanodes matching ``constraint``.

        Results are ordered most recently modified first.  When
        ``describe`` names attributes, a description of each match is
        included.
        """
        with self._locked() as conn:
            states = self._load_states(conn)

        matches = [
            (ref, state) for ref, state in states.items()
            if not state.deleted and constraint.matches(state.attrs)
        ]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        matches.sort(key=lambda m: (m[1].mod_time or epoch, m[0]), reverse=True)

        result = SearchResult(blobs=[ref for ref, _ in matches])
        if describe is not None:
            result.describe = {ref: state.describe(ref, describe) for ref, state in matches}
        return result

    def describe(
        self,
        node: str,
        attrs: Optional[Sequence[str]] = None,
    ) -> Optional[NodeDescription]:
        """Attribute snapshot of a live permanode, or None."""
        with self._locked() as conn:
            state = self._load_states(conn, node).get(node)
        if state is None or state.deleted:
            return None
        return state.describe(node, attrs)

    def verify(self, ref: str) -> bool:
        """Check the signature of a permanode or claim blob."""
        return verify_schema(self.fetch_content(ref), self._key)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
