"""Box row model for the SQL store."""

from sqlalchemy import Column, Double, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from sosbox.database import Base

BOX_TABLE = "sosbox"


class BoxRow(Base):
    """A tracked SOS box.

    Timestamps are ISO-8601 text so tables created by earlier deployments
    keep working unchanged.
    """

    __tablename__ = BOX_TABLE
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str | None] = mapped_column(Text)
    lat: Mapped[float | None] = mapped_column(Double)
    lon: Mapped[float | None] = mapped_column(Double)
    status: Mapped[str | None] = mapped_column(Text)
    batt: Mapped[int | None] = mapped_column(Integer)
    wifi_count: Mapped[int | None] = mapped_column(Integer, default=0, server_default=text("0"))
    created_at: Mapped[str | None] = mapped_column(Text)
    device_id: Mapped[str | None] = mapped_column(Text, index=True)

    # Added after the original table layout
    note: Mapped[str | None] = mapped_column(Text)
    powerbank_mah: Mapped[int | None] = mapped_column(Integer)
    load_w: Mapped[float | None] = mapped_column(Double)
    last_seen: Mapped[str | None] = mapped_column(Text)


def additive_columns() -> list[Column]:
    """Columns that may be missing from older tables, as fresh Column objects.

    Everything except the primary key can be added with ALTER TABLE.
    """
    return [
        Column("name", Text),
        Column("lat", Double),
        Column("lon", Double),
        Column("status", Text),
        Column("batt", Integer),
        Column("wifi_count", Integer, server_default=text("0")),
        Column("created_at", Text),
        Column("device_id", Text),
        Column("note", Text),
        Column("powerbank_mah", Integer),
        Column("load_w", Double),
        Column("last_seen", Text),
    ]
