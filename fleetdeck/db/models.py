"""SQLAlchemy ORM models for the FleetDeck state database.

One table: the durable ``bot_id -> BotIdentity`` mapping. Uses
SQLAlchemy 2.0 style with Mapped and mapped_column.
"""

from datetime import UTC, datetime

from sqlalchemy import Boolean, Index, Integer, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class BotLoginInfo(Base):
    """Persisted session/profile record of one managed bot.

    Attributes:
        bot_id: Stable identity, e.g. 'source.3.container.ft-btc'.
        bot_name: Human label.
        api_url: Base URL of the bot control API, without '/api/v1'.
        sort_id: Display order; dense 0..n-1 after normalization. NULL
            on legacy rows, which sort last.
        username: Last login username.
        encrypted_tokens: AES-256-GCM envelope holding access_token and
            refresh_token, AAD-bound to bot_id. NULL means no session.
        auto_refresh: True while the refresh token is believed valid.
        created_at: ISO8601 UTC timestamp.
        updated_at: ISO8601 UTC timestamp, store-managed.
    """

    __tablename__ = "bot_login_infos"

    bot_id: Mapped[str] = mapped_column(Text, primary_key=True)
    bot_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    api_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    sort_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    username: Mapped[str] = mapped_column(Text, nullable=False, default="")
    encrypted_tokens: Mapped[str | None] = mapped_column(Text, nullable=True)
    auto_refresh: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)

    __table_args__ = (
        Index("idx_bot_login_infos_api_url", "api_url"),
    )

    def __repr__(self) -> str:
        return (
            f"<BotLoginInfo(bot_id={self.bot_id!r}, "
            f"sort_id={self.sort_id!r}, api_url={self.api_url!r})>"
        )
