import sqlite3
import json
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from .utils import get_list, normalize_id, parse_number, parse_year, pick
from .config import DB_PATH, FAVORITES_LIMIT, IMPORT_CHUNK_SIZE

logger = logging.getLogger(__name__)

LIST_TYPES = ('watchlist', 'watched', 'favorites')


class ConnectionPool:
    """
    Per-thread SQLite connections with health checks and nested transaction tracking.

    SQLite connections must not be shared across threads, so each thread gets
    its own; connections of finished threads are closed on the next cleanup.
    """

    def __init__(self, db_path, max_size: int = 20, health_check_interval: int = 300):
        self._db_path = db_path
        self._max_size = max_size
        self._health_check_interval = health_check_interval

        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._last_health_check: dict[int, float] = {}
        self._transaction_depth: dict[int, int] = {}

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def _is_healthy(self, conn: sqlite3.Connection) -> bool:
        try:
            conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            return False

    def _drop_dead_threads(self):
        alive_threads = {t.ident for t in threading.enumerate()}
        for thread_id in set(self._connections) - alive_threads:
            conn = self._connections.pop(thread_id)
            self._last_health_check.pop(thread_id, None)
            self._transaction_depth.pop(thread_id, None)
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.warning(f"Error closing connection for thread {thread_id}: {e}")
            logger.debug(f"Closed connection for finished thread {thread_id}")

    def get_connection(self) -> sqlite3.Connection:
        """Connection for the current thread, created or replaced as needed."""
        thread_id = threading.get_ident()
        now = time.time()

        with self._lock:
            conn = self._connections.get(thread_id)

            if conn is not None and now - self._last_health_check.get(thread_id, 0) > self._health_check_interval:
                if self._is_healthy(conn):
                    self._last_health_check[thread_id] = now
                else:
                    logger.warning(f"Connection for thread {thread_id} failed health check, replacing")
                    conn = None

            if conn is None:
                if len(self._connections) >= self._max_size:
                    self._drop_dead_threads()
                    if len(self._connections) >= self._max_size:
                        raise RuntimeError(f"Connection pool exhausted ({self._max_size} connections)")

                conn = self._create_connection()
                self._connections[thread_id] = conn
                self._last_health_check[thread_id] = now
                self._transaction_depth[thread_id] = 0
                logger.debug(f"Created connection for thread {thread_id} (pool size: {len(self._connections)})")

            return conn

    def get_transaction_depth(self) -> int:
        return self._transaction_depth.get(threading.get_ident(), 0)

    def increment_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            self._transaction_depth[thread_id] = self._transaction_depth.get(thread_id, 0) + 1

    def decrement_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            self._transaction_depth[thread_id] = max(0, self._transaction_depth.get(thread_id, 1) - 1)

    def close_all(self):
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")
            self._connections.clear()
            self._last_health_check.clear()
            self._transaction_depth.clear()
            logger.debug("Connection pool closed")


_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


def _get_pool() -> ConnectionPool:
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                DB_PATH.parent.mkdir(exist_ok=True, parents=True)
                _pool = ConnectionPool(DB_PATH)
    return _pool


@contextmanager
def get_db(read_only: bool = False):
    """
    Database connection with transaction handling.

    Only the outermost context commits or rolls back; nested contexts share
    its transaction. read_only skips the commit.
    """
    pool = _get_pool()
    conn = pool.get_connection()

    is_outermost = pool.get_transaction_depth() == 0
    pool.increment_transaction_depth()

    try:
        yield conn
        if is_outermost and not read_only:
            conn.commit()
    except Exception:
        if is_outermost:
            conn.rollback()
        raise
    finally:
        pool.decrement_transaction_depth()


def close_pool():
    """Close the connection pool. Call on application shutdown."""
    global _pool
    if _pool is not None:
        _pool.close_all()
        _pool = None


def init_db() -> None:
    DB_PATH.parent.mkdir(exist_ok=True, parents=True)
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                uid TEXT PRIMARY KEY,
                username TEXT,
                favorite_genres TEXT,       -- JSON list
                streaming_services TEXT,    -- JSON list
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS user_movies (
                uid TEXT NOT NULL,
                movie_id TEXT NOT NULL,
                list_type TEXT NOT NULL,    -- watchlist | watched | favorites
                title TEXT,
                year INTEGER,
                genre TEXT,                 -- JSON list
                "cast" TEXT,                -- JSON list
                director TEXT,
                streaming_on TEXT,          -- JSON list, NULL when unknown
                rating REAL,                -- community rating, 0-10
                user_rating REAL,           -- user's own rating, 1-5
                favorite INTEGER DEFAULT 0,
                favorite_rank INTEGER,
                added_at TEXT,
                PRIMARY KEY (uid, movie_id, list_type)
            );

            CREATE INDEX IF NOT EXISTS idx_user_movies_list ON user_movies(uid, list_type);
        """)


def load_json(val):
    """Safely load a JSON list from a db field."""
    if not val:
        return []
    if isinstance(val, list):
        return val
    try:
        return json.loads(val)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse JSON '{str(val)[:50]}...': {e}")
        return []


def _dump_list(value) -> str | None:
    if value is None:
        return None
    return json.dumps(get_list({'value': value}, 'value'))


@dataclass
class UserMovieLists:
    watchlist: list[dict] = field(default_factory=list)
    watched: list[dict] = field(default_factory=list)
    favorites: list[dict] = field(default_factory=list)


def save_user(
    uid: str,
    username: str | None = None,
    favorite_genres: list[str] | None = None,
    streaming_services: list[str] | None = None,
) -> None:
    with get_db() as conn:
        conn.execute("""
            INSERT INTO users (uid, username, favorite_genres, streaming_services, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(uid) DO UPDATE SET
                username = excluded.username,
                favorite_genres = excluded.favorite_genres,
                streaming_services = excluded.streaming_services,
                updated_at = excluded.updated_at
        """, (
            uid, username,
            _dump_list(favorite_genres or []),
            _dump_list(streaming_services or []),
            datetime.now().isoformat(),
        ))


def _movie_row(uid: str, list_type: str, movie: dict, rank: int | None) -> tuple:
    favorite = bool(movie.get('favorite')) or list_type == 'favorites'
    return (
        uid,
        normalize_id(movie['id']),
        list_type,
        movie.get('title'),
        parse_year(movie.get('year')),
        _dump_list(movie.get('genre')),
        _dump_list(movie.get('cast')),
        next(iter(get_list(movie, 'director')), None),
        _dump_list(pick(movie, 'streaming_on', 'streamingOn')),
        parse_number(movie.get('rating')),
        parse_number(pick(movie, 'user_rating', 'userRating')),
        1 if favorite else 0,
        rank,
        pick(movie, 'added_at', 'addedAt') or datetime.now().isoformat(),
    )


def _admit_favorites(uid: str, movies: list[dict], stored_ids: set[str]) -> list[dict]:
    """Keep replacements of stored favourites and as many new ones as the Top 5 has room for."""
    taken = set(stored_ids)
    admitted = []
    skipped = 0
    for movie in movies:
        movie_id = normalize_id(movie['id'])
        if movie_id in taken:
            admitted.append(movie)
        elif len(taken) < FAVORITES_LIMIT:
            taken.add(movie_id)
            admitted.append(movie)
        else:
            skipped += 1

    if skipped:
        logger.warning(f"Top {FAVORITES_LIMIT} is full for user {uid}; skipping {skipped} favorites")
    return admitted


def save_user_movies(uid: str, list_type: str, movies: list[dict]) -> int:
    """
    Insert or replace movies in one of a user's lists; returns rows written.

    Favourites are ranked: an explicit 'favorite_rank' wins, then the rank an
    already stored favourite holds, otherwise list order after the highest
    stored rank. Stored favourites count toward the Top 5; new favourites
    beyond it are rejected with a warning.
    """
    if list_type not in LIST_TYPES:
        raise ValueError(f"Unknown list type '{list_type}' (expected one of {', '.join(LIST_TYPES)})")

    movies = [m for m in movies or [] if isinstance(m, dict) and m.get('id') is not None]

    with get_db() as conn:
        stored_ranks: dict[str, int | None] = {}
        if list_type == 'favorites':
            stored_ranks = {
                row['movie_id']: row['favorite_rank']
                for row in conn.execute(
                    "SELECT movie_id, favorite_rank FROM user_movies WHERE uid = ? AND list_type = 'favorites'",
                    (uid,),
                )
            }
            movies = _admit_favorites(uid, movies, set(stored_ranks))
        max_rank = max((r for r in stored_ranks.values() if r), default=0)

        rows = []
        for movie in movies:
            rank = None
            if list_type == 'favorites':
                rank = pick(movie, 'favorite_rank', 'favoriteRank') or stored_ranks.get(normalize_id(movie['id']))
                if not rank:
                    max_rank += 1
                    rank = max_rank
                rank = int(rank)
            rows.append(_movie_row(uid, list_type, movie, rank))

        for i in range(0, len(rows), IMPORT_CHUNK_SIZE):
            conn.executemany("""
                INSERT OR REPLACE INTO user_movies
                (uid, movie_id, list_type, title, year, genre, "cast", director, streaming_on,
                 rating, user_rating, favorite, favorite_rank, added_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, rows[i:i + IMPORT_CHUNK_SIZE])

    return len(rows)


def load_user_preferences(uid: str) -> dict | None:
    """Explicit preferences for a user, or None for an unknown uid."""
    with get_db(read_only=True) as conn:
        row = conn.execute(
            "SELECT uid, username, favorite_genres, streaming_services FROM users WHERE uid = ?",
            (uid,),
        ).fetchone()

    if row is None:
        return None
    return {
        'uid': row['uid'],
        'username': row['username'],
        'favorite_genres': load_json(row['favorite_genres']),
        'streaming_services': load_json(row['streaming_services']),
    }


def _row_to_movie(row: sqlite3.Row) -> dict:
    return {
        'id': row['movie_id'],
        'title': row['title'],
        'year': row['year'],
        'genre': load_json(row['genre']),
        'cast': load_json(row['cast']),
        'director': row['director'],
        'streaming_on': load_json(row['streaming_on']) if row['streaming_on'] is not None else None,
        'rating': row['rating'],
        'user_rating': row['user_rating'],
        'favorite': bool(row['favorite']),
        'favorite_rank': row['favorite_rank'],
        'added_at': row['added_at'],
    }


def load_user_movie_lists(uid: str) -> UserMovieLists:
    """A user's watchlist, watched and favourites lists; favourites ordered by rank."""
    with get_db(read_only=True) as conn:
        rows = conn.execute("""
            SELECT * FROM user_movies
            WHERE uid = ?
            ORDER BY list_type, favorite_rank IS NULL, favorite_rank, added_at
        """, (uid,)).fetchall()

    lists = UserMovieLists()
    for row in rows:
        getattr(lists, row['list_type']).append(_row_to_movie(row))
    return lists


def get_store_stats() -> dict:
    with get_db(read_only=True) as conn:
        user_count = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
        per_list = {
            row[0]: row[1]
            for row in conn.execute("SELECT list_type, COUNT(*) FROM user_movies GROUP BY list_type")
        }
        rated_count = conn.execute(
            "SELECT COUNT(*) FROM user_movies WHERE list_type = 'watched' AND user_rating > 0"
        ).fetchone()[0]

    return {
        'users': user_count,
        'rated': rated_count,
        **{list_type: per_list.get(list_type, 0) for list_type in LIST_TYPES},
    }
