"""
SQLite-backed store for places, the current route and settings.

The store is the single source of truth shared by the pipeline and
whatever presents its results. Consumers do not poll: they subscribe to
a topic (``"places"``, ``"route"`` or ``"settings"``) and receive the new
snapshot after every committed write that changed it.

Writes made inside ``Store.transaction()`` commit together, and their
notifications are delivered once, after the commit, so a subscriber
never observes a half-applied update. Rolled back writes notify nobody.

Any change to the set of places (add, edit, delete, replace) clears the
stored route, which may no longer match the places it references.
"""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from tripspot.config import DB_PATH, default_settings
from tripspot.models import Place, Route, Settings

logger = logging.getLogger(__name__)

TOPICS = ("places", "route", "settings")
SINGLETON_KEY = 1
EXPORT_VERSION = 1

Listener = Callable[[Any], None]


class Store:
    def __init__(self, db_path: Optional[str] = None, defaults: Optional[Settings] = None):
        self.db_path = db_path or DB_PATH
        if self.db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
        # autocommit mode; transactions are opened explicitly in transaction()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self._lock = threading.RLock()
        self._listeners: Dict[str, List[Listener]] = {topic: [] for topic in TOPICS}
        self._depth = 0
        self._dirty: set = set()
        self._init_schema(defaults or default_settings())

    def _init_schema(self, defaults: Settings) -> None:
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS places (
                    id TEXT PRIMARY KEY,
                    position INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    city TEXT NOT NULL,
                    category TEXT NOT NULL,
                    note TEXT NOT NULL,
                    latitude REAL,
                    longitude REAL
                );
                CREATE TABLE IF NOT EXISTS route (
                    id INTEGER PRIMARY KEY,
                    data TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS settings (
                    id INTEGER PRIMARY KEY,
                    data TEXT NOT NULL
                );
                """
            )
            self._conn.execute(
                "INSERT OR IGNORE INTO settings (id, data) VALUES (?, ?)",
                (SINGLETON_KEY, json.dumps(defaults.to_dict())),
            )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- subscriptions ---------------------------------------------------

    def subscribe(self, topic: str, listener: Listener) -> Callable[[], None]:
        """Call ``listener(snapshot)`` whenever ``topic`` changes.

        Returns a function that removes the subscription.
        """
        if topic not in self._listeners:
            raise ValueError(f"Unknown topic {topic!r}; expected one of {TOPICS}")
        with self._lock:
            self._listeners[topic].append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners[topic]:
                    self._listeners[topic].remove(listener)

        return unsubscribe

    def _snapshot(self, topic: str) -> Any:
        if topic == "places":
            return self.list_places()
        if topic == "route":
            return self.get_route()
        return self.get_settings()

    def _notify(self, topics: Iterable[str]) -> None:
        with self._lock:
            pending = [
                (list(self._listeners[topic]), self._snapshot(topic))
                for topic in TOPICS
                if topic in topics
            ]
        for listeners, snapshot in pending:
            for listener in listeners:
                try:
                    listener(snapshot)
                except Exception:
                    logger.exception("Store listener %r failed", listener)

    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        """Group writes into one commit with a single round of notifications."""
        with self._lock:
            outer = self._depth == 0
            if outer:
                self._conn.execute("BEGIN")
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if outer:
                    self._conn.execute("ROLLBACK")
                    self._dirty.clear()
                raise
            self._depth -= 1
            if not outer:
                return
            self._conn.execute("COMMIT")
            changed, self._dirty = self._dirty, set()
        if changed:
            self._notify(changed)

    # -- places ----------------------------------------------------------

    @staticmethod
    def _row_to_place(row: tuple) -> Place:
        id_, name, city, category, note, lat, lon = row
        return Place(id=id_, name=name, city=city, category=category, note=note, latitude=lat, longitude=lon)

    def list_places(self) -> List[Place]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, name, city, category, note, latitude, longitude FROM places ORDER BY position"
            ).fetchall()
        return [self._row_to_place(row) for row in rows]

    def get_place(self, place_id: str) -> Optional[Place]:
        with self._lock:
            row = self._conn.execute(
                "SELECT id, name, city, category, note, latitude, longitude FROM places WHERE id=?",
                (place_id,),
            ).fetchone()
        return self._row_to_place(row) if row else None

    def _insert_place(self, place: Place) -> None:
        (position,) = self._conn.execute("SELECT COALESCE(MAX(position), -1) + 1 FROM places").fetchone()
        try:
            self._conn.execute(
                "INSERT INTO places (id, position, name, city, category, note, latitude, longitude) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (place.id, position, place.name, place.city, place.category, place.note,
                 place.latitude, place.longitude),
            )
        except sqlite3.IntegrityError:
            raise ValueError(f"A place with id {place.id!r} already exists") from None

    def _invalidate_route(self) -> None:
        cur = self._conn.execute("DELETE FROM route WHERE id=?", (SINGLETON_KEY,))
        if cur.rowcount:
            self._dirty.add("route")

    def add_place(self, place: Place) -> Place:
        with self.transaction():
            self._insert_place(place)
            self._invalidate_route()
            self._dirty.add("places")
        return place

    def update_place(self, place: Place) -> Place:
        """Replace the stored fields of an existing place (matched by id)."""
        with self.transaction():
            cur = self._conn.execute(
                "UPDATE places SET name=?, city=?, category=?, note=?, latitude=?, longitude=? WHERE id=?",
                (place.name, place.city, place.category, place.note, place.latitude, place.longitude, place.id),
            )
            if not cur.rowcount:
                raise KeyError(place.id)
            self._invalidate_route()
            self._dirty.add("places")
        return place

    def delete_place(self, place_id: str) -> bool:
        with self.transaction():
            cur = self._conn.execute("DELETE FROM places WHERE id=?", (place_id,))
            if not cur.rowcount:
                return False
            self._invalidate_route()
            self._dirty.add("places")
        return True

    def replace_places(self, places: Iterable[Place]) -> None:
        """Swap the whole place list and drop the route in one commit."""
        with self.transaction():
            self._conn.execute("DELETE FROM places")
            for place in places:
                self._insert_place(place)
            self._invalidate_route()
            self._dirty.add("places")

    # -- route -----------------------------------------------------------

    def get_route(self) -> Optional[Route]:
        with self._lock:
            row = self._conn.execute("SELECT data FROM route WHERE id=?", (SINGLETON_KEY,)).fetchone()
        return Route.from_dict(json.loads(row[0])) if row else None

    def save_route(self, route: Route) -> Route:
        """Store ``route``; every id in it must name a stored place."""
        if len(set(route.sequence)) != len(route.sequence):
            raise ValueError("Route sequence contains duplicate ids")
        with self.transaction():
            known = {row[0] for row in self._conn.execute("SELECT id FROM places")}
            missing = [pid for pid in route.sequence if pid not in known]
            if missing:
                raise ValueError(f"Route references unknown places: {missing}")
            self._conn.execute(
                "INSERT OR REPLACE INTO route (id, data) VALUES (?, ?)",
                (SINGLETON_KEY, json.dumps(route.to_dict(), ensure_ascii=False)),
            )
            self._dirty.add("route")
        return route

    def clear_route(self) -> None:
        with self.transaction():
            self._invalidate_route()

    # -- settings --------------------------------------------------------

    def get_settings(self) -> Settings:
        with self._lock:
            row = self._conn.execute("SELECT data FROM settings WHERE id=?", (SINGLETON_KEY,)).fetchone()
        return Settings.from_dict(json.loads(row[0])) if row else default_settings()

    def save_settings(self, settings: Settings) -> Settings:
        with self.transaction():
            self._conn.execute(
                "INSERT OR REPLACE INTO settings (id, data) VALUES (?, ?)",
                (SINGLETON_KEY, json.dumps(settings.to_dict())),
            )
            self._dirty.add("settings")
        return settings

    # -- exchange document ------------------------------------------------

    def export_document(self) -> Dict[str, Any]:
        with self._lock:
            places = self.list_places()
            route = self.get_route()
        return {
            "version": EXPORT_VERSION,
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "locations": [place.to_dict() for place in places],
            "route": route.to_dict() if route else None,
        }

    def import_document(self, document: Dict[str, Any]) -> None:
        """Replace places and route with the content of an exported document."""
        version = document.get("version", EXPORT_VERSION)
        if version != EXPORT_VERSION:
            raise ValueError(f"Unsupported document version {version!r}")
        places = [Place.from_dict(item) for item in document.get("locations") or []]
        route_data = document.get("route")
        with self.transaction():
            self.replace_places(places)
            if route_data:
                self.save_route(Route.from_dict(route_data))
        logger.info("Imported %d places (route: %s)", len(places), "yes" if route_data else "no")
