"""
Click analytics storage.

Raw click events live outside the transactional database. SQLite is used
for development, ClickHouse (over its HTTP interface) in production. Queries
here feed link stats and the A/B control-group numbers.
"""

import sqlite3
from abc import ABC, abstractmethod
from contextlib import closing
from typing import Dict, List

import requests

from smartlink_app.queue.models import ClickEvent

CLICK_COLUMNS = (
    "short_code", "url_id", "timestamp", "ip_address", "user_agent", "referer",
    "country", "region", "city", "device_type", "os", "browser", "language",
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
    "mechanism", "rule_id", "variant_id", "target_url", "is_bot",
)


def _row(event: ClickEvent) -> tuple:
    data = event.model_dump()
    data["timestamp"] = event.timestamp.isoformat()
    data["is_bot"] = int(event.is_bot)
    return tuple(data[column] for column in CLICK_COLUMNS)


class ClickStorageStrategy(ABC):
    """Interface for analytics backends. Reads degrade to empty results."""

    @abstractmethod
    async def store_clicks(self, events: List[ClickEvent]) -> bool:
        pass

    @abstractmethod
    async def get_total_clicks(self, short_code: str) -> int:
        pass

    @abstractmethod
    async def get_clicks_by_mechanism(self, short_code: str) -> Dict[str, int]:
        """Clicks grouped by how the target was chosen (rule, variant, control, fallback)."""
        pass

    @abstractmethod
    async def get_clicks_by_device(self, short_code: str) -> Dict[str, int]:
        pass

    @abstractmethod
    async def get_clicks_by_country(self, short_code: str) -> Dict[str, int]:
        pass

    @abstractmethod
    async def get_top_referers(self, short_code: str, limit: int = 10) -> List[Dict]:
        pass

    @abstractmethod
    async def get_control_clicks(self, short_code: str) -> int:
        """Human clicks that went to the A/B control group."""
        pass


class SQLiteClickStorage(ClickStorageStrategy):
    """Single-file analytics store. One short-lived connection per call."""

    def __init__(self, db_path: str = "analytics.db"):
        self.db_path = db_path
        self._init_database()

    def _connect(self):
        return closing(sqlite3.connect(self.db_path))

    def _init_database(self):
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS url_clicks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    short_code TEXT NOT NULL,
                    url_id INTEGER NOT NULL,
                    timestamp DATETIME NOT NULL,
                    ip_address TEXT,
                    user_agent TEXT,
                    referer TEXT,
                    country TEXT,
                    region TEXT,
                    city TEXT,
                    device_type TEXT,
                    os TEXT,
                    browser TEXT,
                    language TEXT,
                    utm_source TEXT,
                    utm_medium TEXT,
                    utm_campaign TEXT,
                    utm_term TEXT,
                    utm_content TEXT,
                    mechanism TEXT NOT NULL,
                    rule_id INTEGER,
                    variant_id INTEGER,
                    target_url TEXT,
                    is_bot INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS ix_url_clicks_short_code ON url_clicks (short_code)")
            conn.execute("CREATE INDEX IF NOT EXISTS ix_url_clicks_timestamp ON url_clicks (timestamp)")
            conn.commit()
        print("✅ SQLite click storage initialized")

    async def store_clicks(self, events: List[ClickEvent]) -> bool:
        if not events:
            return True
        placeholders = ", ".join("?" for _ in CLICK_COLUMNS)
        try:
            with self._connect() as conn:
                conn.executemany(
                    f"INSERT INTO url_clicks ({', '.join(CLICK_COLUMNS)}) VALUES ({placeholders})",
                    [_row(event) for event in events],
                )
                conn.commit()
            return True
        except sqlite3.Error as e:
            print(f"❌ SQLite storage error: {e}")
            return False

    def _fetch(self, sql: str, params: tuple) -> List[tuple]:
        try:
            with self._connect() as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            print(f"❌ SQLite query error: {e}")
            return []

    def _group_by(self, column: str, short_code: str) -> Dict[str, int]:
        rows = self._fetch(
            f"SELECT {column}, COUNT(*) FROM url_clicks WHERE short_code = ? GROUP BY {column}",
            (short_code,),
        )
        return {row[0] or "unknown": row[1] for row in rows}

    def _count(self, where: str, params: tuple) -> int:
        rows = self._fetch(f"SELECT COUNT(*) FROM url_clicks WHERE {where}", params)
        return rows[0][0] if rows else 0

    async def get_total_clicks(self, short_code: str) -> int:
        return self._count("short_code = ?", (short_code,))

    async def get_clicks_by_mechanism(self, short_code: str) -> Dict[str, int]:
        return self._group_by("mechanism", short_code)

    async def get_clicks_by_device(self, short_code: str) -> Dict[str, int]:
        return self._group_by("device_type", short_code)

    async def get_clicks_by_country(self, short_code: str) -> Dict[str, int]:
        return self._group_by("country", short_code)

    async def get_top_referers(self, short_code: str, limit: int = 10) -> List[Dict]:
        rows = self._fetch("""
            SELECT referer, COUNT(*) AS count
            FROM url_clicks
            WHERE short_code = ? AND referer IS NOT NULL
            GROUP BY referer
            ORDER BY count DESC
            LIMIT ?
        """, (short_code, limit))
        return [{"referer": row[0], "count": row[1]} for row in rows]

    async def get_control_clicks(self, short_code: str) -> int:
        return self._count(
            "short_code = ? AND mechanism = 'control' AND is_bot = 0", (short_code,)
        )


class ClickHouseClickStorage(ClickStorageStrategy):
    """
    ClickHouse over HTTP.

    The worker already batches, so each `store_clicks` call is one
    TabSeparated INSERT. Reads use ClickHouse query parameters
    ({name:Type} + param_name) so short codes are never spliced into SQL.
    """

    TABLE = "smartlink.url_clicks"

    def __init__(self, url: str = "http://localhost:8123", timeout: int = 5):
        self.url = url
        self.timeout = timeout
        self._init_database()

    def _init_database(self):
        try:
            requests.post(self.url, data="CREATE DATABASE IF NOT EXISTS smartlink", timeout=self.timeout)
            requests.post(self.url, data=f"""
                CREATE TABLE IF NOT EXISTS {self.TABLE} (
                    short_code String,
                    url_id UInt64,
                    timestamp DateTime64(3, 'UTC'),
                    ip_address String,
                    user_agent String,
                    referer String,
                    country LowCardinality(String),
                    region String,
                    city String,
                    device_type LowCardinality(String),
                    os LowCardinality(String),
                    browser LowCardinality(String),
                    language LowCardinality(String),
                    utm_source String,
                    utm_medium String,
                    utm_campaign String,
                    utm_term String,
                    utm_content String,
                    mechanism LowCardinality(String),
                    rule_id Nullable(UInt64),
                    variant_id Nullable(UInt64),
                    target_url String,
                    is_bot UInt8
                )
                ENGINE = MergeTree()
                PARTITION BY toYYYYMM(timestamp)
                ORDER BY (short_code, timestamp)
            """, timeout=self.timeout)
            print("✅ ClickHouse click storage initialized")
        except requests.RequestException as e:
            print(f"⚠️  ClickHouse initialization failed: {e}")

    @staticmethod
    def _tsv_field(value) -> str:
        if value is None:
            return "\\N"
        return str(value).replace("\\", "\\\\").replace("\t", "\\t").replace("\n", "\\n")

    async def store_clicks(self, events: List[ClickEvent]) -> bool:
        if not events:
            return True
        body = "\n".join(
            "\t".join(self._tsv_field(value) for value in _row(event))
            for event in events
        )
        try:
            response = requests.post(
                self.url,
                params={
                    "query": f"INSERT INTO {self.TABLE} ({', '.join(CLICK_COLUMNS)}) FORMAT TabSeparated",
                    # ISO 8601 timestamps with offset
                    "date_time_input_format": "best_effort",
                },
                data=body.encode("utf-8"),
                timeout=self.timeout,
            )
            return response.status_code == 200
        except requests.RequestException as e:
            print(f"❌ ClickHouse storage error: {e}")
            return False

    def _query(self, sql: str, **params) -> List[Dict]:
        try:
            response = requests.get(
                self.url,
                params={"query": f"{sql} FORMAT JSON", **{f"param_{k}": v for k, v in params.items()}},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json().get("data", [])
        except (requests.RequestException, ValueError) as e:
            print(f"❌ ClickHouse query error: {e}")
            return []

    def _group_by(self, column: str, short_code: str) -> Dict[str, int]:
        rows = self._query(
            f"SELECT {column} AS key, count() AS count FROM {self.TABLE} "
            f"WHERE short_code = {{short_code:String}} GROUP BY {column}",
            short_code=short_code,
        )
        return {row["key"] or "unknown": int(row["count"]) for row in rows}

    def _count(self, where: str, **params) -> int:
        rows = self._query(f"SELECT count() AS count FROM {self.TABLE} WHERE {where}", **params)
        return int(rows[0]["count"]) if rows else 0

    async def get_total_clicks(self, short_code: str) -> int:
        return self._count("short_code = {short_code:String}", short_code=short_code)

    async def get_clicks_by_mechanism(self, short_code: str) -> Dict[str, int]:
        return self._group_by("mechanism", short_code)

    async def get_clicks_by_device(self, short_code: str) -> Dict[str, int]:
        return self._group_by("device_type", short_code)

    async def get_clicks_by_country(self, short_code: str) -> Dict[str, int]:
        return self._group_by("country", short_code)

    async def get_top_referers(self, short_code: str, limit: int = 10) -> List[Dict]:
        rows = self._query(
            f"SELECT referer, count() AS count FROM {self.TABLE} "
            f"WHERE short_code = {{short_code:String}} AND referer != '' "
            f"GROUP BY referer ORDER BY count DESC LIMIT {{limit:UInt32}}",
            short_code=short_code,
            limit=limit,
        )
        return [{"referer": row["referer"], "count": int(row["count"])} for row in rows]

    async def get_control_clicks(self, short_code: str) -> int:
        return self._count(
            "short_code = {short_code:String} AND mechanism = 'control' AND is_bot = 0",
            short_code=short_code,
        )
