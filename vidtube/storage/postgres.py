from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from vidtube.logging import get_logger
from vidtube.storage.errors import ConstraintViolation
from vidtube.storage.models import (
    Account,
    ChannelProfile,
    Subscription,
    Video,
    VideoOwner,
    WatchedVideo,
    new_id,
)

_MUTABLE_ACCOUNT_FIELDS = frozenset({"full_name", "email", "avatar", "cover_image"})

_REQUIRED_TABLES = ("account", "subscription", "video", "watch_history")


def _unique_field(exc: errors.UniqueViolation) -> str:
    constraint = getattr(getattr(exc, "diag", None), "constraint_name", None) or ""
    if "username" in constraint:
        return "username"
    return "email"


class PostgresStore:
    """Postgres-backed account store; schema lives in scripts/schema.sql."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    def _verify_required_schema(self) -> None:
        with self._connect() as conn:
            missing_tables = []
            for table in _REQUIRED_TABLES:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)
        if missing_tables:
            raise RuntimeError(
                "Missing required Postgres tables: {}. Apply scripts/schema.sql first.".format(
                    ", ".join(sorted(missing_tables))
                )
            )

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _row_to_account(row: dict, watch_history: Optional[List[str]] = None) -> Account:
        return Account(
            id=str(row["id"]),
            username=row["username"],
            email=row["email"],
            full_name=row.get("full_name") or "",
            password_hash=row.get("password_hash"),
            avatar=row.get("avatar"),
            cover_image=row.get("cover_image"),
            refresh_token=row.get("refresh_token"),
            watch_history=watch_history or [],
            created_at=row.get("created_at", datetime.utcnow()),
            updated_at=row.get("updated_at", datetime.utcnow()),
        )

    @staticmethod
    def _row_to_video(row: dict) -> Video:
        return Video(
            id=str(row["id"]),
            owner_id=str(row["owner_id"]),
            title=row["title"],
            description=row.get("description") or "",
            video_file=row.get("video_file"),
            thumbnail=row.get("thumbnail"),
            duration=float(row.get("duration") or 0.0),
            views=int(row.get("views") or 0),
            is_published=bool(row.get("is_published", True)),
            created_at=row.get("created_at", datetime.utcnow()),
            updated_at=row.get("updated_at", datetime.utcnow()),
        )

    def _load_account(self, conn, where: str, params: tuple) -> Optional[Account]:
        row = conn.execute(f"SELECT * FROM account WHERE {where}", params).fetchone()
        if not row:
            return None
        history = conn.execute(
            "SELECT video_id FROM watch_history WHERE account_id = %s ORDER BY position",
            (row["id"],),
        ).fetchall()
        return self._row_to_account(row, [str(h["video_id"]) for h in history])

    # accounts
    def create_account(
        self,
        *,
        username: str,
        email: str,
        full_name: str,
        password_hash: str,
        avatar: Optional[str] = None,
        cover_image: Optional[str] = None,
    ) -> Account:
        account_id = new_id()
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO account (id, username, email, full_name, password_hash, avatar, cover_image)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (account_id, username, email, full_name, password_hash, avatar, cover_image),
                ).fetchone()
        except errors.UniqueViolation as exc:
            field = _unique_field(exc)
            raise ConstraintViolation(f"{field} already exists", {"field": field}) from exc
        return self._row_to_account(row)

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._connect() as conn:
            return self._load_account(conn, "id = %s", (account_id,))

    def get_account_by_username(self, username: str) -> Optional[Account]:
        with self._connect() as conn:
            return self._load_account(conn, "username = %s", (username,))

    def find_account(
        self, *, email: Optional[str] = None, username: Optional[str] = None
    ) -> Optional[Account]:
        if not email and not username:
            return None
        with self._connect() as conn:
            return self._load_account(
                conn,
                "email = %s OR username = %s ORDER BY created_at LIMIT 1",
                (email, username),
            )

    def update_account(self, account_id: str, **fields: Any) -> Optional[Account]:
        unknown = set(fields) - _MUTABLE_ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"cannot update account fields: {sorted(unknown)}")
        if not fields:
            return self.get_account(account_id)
        # Column names come from the allow-list above, values are parameters
        assignments = ", ".join(f"{name} = %s" for name in fields)
        try:
            with self._connect() as conn:
                updated = conn.execute(
                    f"UPDATE account SET {assignments}, updated_at = now() WHERE id = %s",
                    (*fields.values(), account_id),
                ).rowcount
                if not updated:
                    return None
                return self._load_account(conn, "id = %s", (account_id,))
        except errors.UniqueViolation as exc:
            field = _unique_field(exc)
            raise ConstraintViolation(f"{field} already exists", {"field": field}) from exc

    def save_password(self, account_id: str, password_hash: str) -> None:
        with self._connect() as conn:
            updated = conn.execute(
                "UPDATE account SET password_hash = %s, updated_at = now() WHERE id = %s",
                (password_hash, account_id),
            ).rowcount
        if not updated:
            raise ConstraintViolation(
                "account not found for credentials", {"account_id": account_id}
            )

    def set_refresh_token(self, account_id: str, token: Optional[str]) -> bool:
        with self._connect() as conn:
            updated = conn.execute(
                "UPDATE account SET refresh_token = %s, updated_at = now() WHERE id = %s",
                (token, account_id),
            ).rowcount
        return bool(updated)

    # subscriptions
    def add_subscription(self, subscriber_id: str, channel_id: str) -> Subscription:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO subscription (id, subscriber_id, channel_id)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (subscriber_id, channel_id) DO NOTHING
                    """,
                    (new_id(), subscriber_id, channel_id),
                )
                row = conn.execute(
                    "SELECT * FROM subscription WHERE subscriber_id = %s AND channel_id = %s",
                    (subscriber_id, channel_id),
                ).fetchone()
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation(
                "subscription references unknown account",
                {"subscriber_id": subscriber_id, "channel_id": channel_id},
            ) from exc
        return Subscription(
            id=str(row["id"]),
            subscriber_id=str(row["subscriber_id"]),
            channel_id=str(row["channel_id"]),
            created_at=row.get("created_at", datetime.utcnow()),
            updated_at=row.get("updated_at", datetime.utcnow()),
        )

    def remove_subscription(self, subscriber_id: str, channel_id: str) -> bool:
        with self._connect() as conn:
            deleted = conn.execute(
                "DELETE FROM subscription WHERE subscriber_id = %s AND channel_id = %s",
                (subscriber_id, channel_id),
            ).rowcount
        return bool(deleted)

    def get_channel_profile(
        self, username: str, viewer_id: Optional[str] = None
    ) -> Optional[ChannelProfile]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT a.id, a.username, a.email, a.full_name, a.avatar, a.cover_image,
                       (SELECT count(*) FROM subscription s WHERE s.channel_id = a.id) AS subscribers_count,
                       (SELECT count(*) FROM subscription s WHERE s.subscriber_id = a.id) AS subscribed_to_count,
                       EXISTS (
                           SELECT 1 FROM subscription s
                           WHERE s.channel_id = a.id AND s.subscriber_id = %s
                       ) AS is_subscribed
                FROM account a
                WHERE a.username = %s
                """,
                (viewer_id, username),
            ).fetchone()
        if not row:
            return None
        return ChannelProfile(
            id=str(row["id"]),
            username=row["username"],
            email=row["email"],
            full_name=row.get("full_name") or "",
            avatar=row.get("avatar"),
            cover_image=row.get("cover_image"),
            subscribers_count=int(row["subscribers_count"]),
            channels_subscribed_to_count=int(row["subscribed_to_count"]),
            is_subscribed=bool(row["is_subscribed"]),
        )

    # videos / watch history
    def create_video(
        self,
        owner_id: str,
        title: str,
        *,
        description: str = "",
        video_file: Optional[str] = None,
        thumbnail: Optional[str] = None,
        duration: float = 0.0,
        is_published: bool = True,
    ) -> Video:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO video (id, owner_id, title, description, video_file, thumbnail, duration, is_published)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        new_id(),
                        owner_id,
                        title,
                        description,
                        video_file,
                        thumbnail,
                        duration,
                        is_published,
                    ),
                ).fetchone()
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation("video owner not found", {"owner_id": owner_id}) from exc
        return self._row_to_video(row)

    def add_to_watch_history(self, account_id: str, video_id: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO watch_history (account_id, video_id, position)
                    SELECT %s, %s, COALESCE(MAX(position) + 1, 0)
                    FROM watch_history WHERE account_id = %s
                    """,
                    (account_id, video_id, account_id),
                )
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation(
                "watch history references unknown record",
                {"account_id": account_id, "video_id": video_id},
            ) from exc

    def get_watch_history(self, account_id: str) -> List[WatchedVideo]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT v.*, o.full_name AS owner_full_name, o.username AS owner_username,
                       o.avatar AS owner_avatar
                FROM watch_history w
                JOIN video v ON v.id = w.video_id
                LEFT JOIN account o ON o.id = v.owner_id
                WHERE w.account_id = %s
                ORDER BY w.position
                """,
                (account_id,),
            ).fetchall()
        history: List[WatchedVideo] = []
        for row in rows:
            owner = None
            if row.get("owner_username"):
                owner = VideoOwner(
                    full_name=row.get("owner_full_name") or "",
                    username=row["owner_username"],
                    avatar=row.get("owner_avatar"),
                )
            history.append(WatchedVideo(video=self._row_to_video(row), owner=owner))
        return history
