"""
civic_answers/core/retriever.py

Cosine-similarity ranking over the indexed content corpus.

Assumptions & external contracts:
- The corpus is owned by the ingestion collaborator; this module only reads it.
- Postgres table (default `pages`): id, url (unique), title, content,
  embedding (FLOAT8[] or pgvector `vector`), last_updated.
- psycopg (v3) with dict_row; pgvector adapters registered when the extension exists.

Behavior:
- rank() is a brute-force scan: O(n) cosine computations per request. Fine for
  the page counts a periodic scraper produces; the first thing to replace with
  an ANN index (HNSW) if the corpus grows by orders of magnitude.
- Mismatched dimensionality scores 0 instead of raising.
- Ties keep corpus iteration order (stable sort).
"""

from __future__ import annotations
import math
import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence

import psycopg
from pgvector.psycopg import register_vector
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row

from civic_answers.core import config
from civic_answers.core.errors import CorpusUnavailable
from civic_answers.core.logs import make_jlog
from civic_answers.core.models import ContentItem, RankedMatch

jlog = make_jlog("core.retriever")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b) or len(a) == 0:
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    sim = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    return max(-1.0, min(1.0, sim))


def rank(query_vector: Sequence[float], items: Iterable[ContentItem], k: Optional[int] = None) -> List[RankedMatch]:
    k = config.TOP_K if k is None else int(k)
    if k <= 0:
        return []
    scored: List[RankedMatch] = []
    for item in items:
        if item.embedding is None or len(item.embedding) == 0:
            continue
        scored.append(RankedMatch(item=item, similarity=cosine_similarity(query_vector, item.embedding)))
    # stable with reverse=True: equal scores keep corpus order
    scored.sort(key=lambda m: m.similarity, reverse=True)
    return scored[:k]


class InMemoryCorpus:
    def __init__(self, items: Optional[Iterable[ContentItem]] = None):
        self._items: List[ContentItem] = list(items or [])

    def add(self, item: ContentItem) -> None:
        self._items.append(item)

    def items(self) -> List[ContentItem]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


class PgCorpus:
    """Read-only view of the pages table."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        dbname: Optional[str] = None,
        table: Optional[str] = None,
        connect=psycopg.connect,
    ):
        self.host = host or config.PG_HOST
        self.port = port or config.PG_PORT
        self.user = user or config.PG_USER
        self.password = password if password is not None else config.PG_PASSWORD
        self.dbname = dbname or config.PG_DB
        self.table = table or config.PG_PAGES_TABLE
        if not config.TABLE_NAME_RE.match(self.table):
            raise ValueError(f"invalid table name: {self.table}")
        self._connect = connect
        self._conn = None
        self._lock = threading.Lock()

    def _connection(self):
        if self._conn is not None and not getattr(self._conn, "closed", False):
            return self._conn
        # make_conninfo quotes values; an unset password is left out
        params = {"host": self.host, "port": self.port, "dbname": self.dbname, "user": self.user, "password": self.password}
        conninfo = make_conninfo(**{k: v for k, v in params.items() if v is not None})
        try:
            conn = self._connect(conninfo, autocommit=True, row_factory=dict_row)
        except psycopg.Error as e:
            jlog({"level": "ERROR", "event": "pg_connect_failed", "host": self.host, "detail": str(e)})
            raise CorpusUnavailable(f"pg_connect_failed: {e}") from e
        _register_vector(conn)
        self._conn = conn
        jlog({"event": "pg_connect_ok", "host": self.host, "db": self.dbname})
        return conn

    def items(self) -> List[ContentItem]:
        sql = f"SELECT id, url, title, content, embedding, last_updated FROM {self.table} WHERE embedding IS NOT NULL"
        with self._lock:
            conn = self._connection()
            try:
                with conn.cursor() as cur:
                    cur.execute(sql)
                    rows = cur.fetchall()
            except psycopg.Error as e:
                jlog({"level": "ERROR", "event": "pg_read_failed", "table": self.table, "detail": str(e)})
                self._conn = None
                raise CorpusUnavailable(f"pg_read_failed: {e}") from e
        return [_row_to_item(r) for r in rows]

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


def _register_vector(conn) -> None:
    """Let `vector` columns decode like FLOAT8[]; absent extension is not an error."""
    try:
        register_vector(conn)
    except psycopg.ProgrammingError as e:
        jlog({"level": "WARN", "event": "pgvector_unavailable", "detail": str(e)})


def _row_to_item(r: Dict[str, Any]) -> ContentItem:
    emb = r.get("embedding")
    vector: Optional[List[float]] = None
    if emb is not None:
        vector = [float(x) for x in (emb.tolist() if hasattr(emb, "tolist") else emb)]
    return ContentItem(
        id=r.get("id"),
        source_url=r.get("url") or "",
        title=r.get("title") or "",
        body_text=r.get("content") or "",
        embedding=vector,
        last_indexed=r.get("last_updated"),
    )
