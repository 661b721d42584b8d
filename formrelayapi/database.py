import databases
import sqlalchemy
from sqlalchemy.dialects import postgresql, sqlite

from formrelayapi.config import config

metadata = sqlalchemy.MetaData()


form_table = sqlalchemy.Table(
    "forms",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.String(36), primary_key=True),
    sqlalchemy.Column("user_id", sqlalchemy.String(36), nullable=False, index=True),
    sqlalchemy.Column("title", sqlalchemy.String(100), nullable=False),
    sqlalchemy.Column("description", sqlalchemy.Text),
    sqlalchemy.Column("fields", sqlalchemy.JSON, nullable=False),  # ordered list of field definitions
    sqlalchemy.Column("email_recipient", sqlalchemy.String(320), nullable=False),
    sqlalchemy.Column("email_subject", sqlalchemy.String(256)),
    sqlalchemy.Column("is_active", sqlalchemy.Boolean, default=True, nullable=False),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime(timezone=True)),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime(timezone=True)),
)

submission_table = sqlalchemy.Table(
    "submissions",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.String(36), primary_key=True),
    sqlalchemy.Column(
        "form_id", sqlalchemy.ForeignKey("forms.id", ondelete="CASCADE"), nullable=False, index=True
    ),
    sqlalchemy.Column("data", sqlalchemy.JSON, nullable=False),  # field id -> value
    sqlalchemy.Column("files", sqlalchemy.JSON, default=[]),  # storage paths
    sqlalchemy.Column("ip_address", sqlalchemy.String(64)),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime(timezone=True)),
)

comment_table = sqlalchemy.Table(
    "comments",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.String(36), primary_key=True),
    sqlalchemy.Column("user_id", sqlalchemy.String(36), nullable=False, index=True),
    sqlalchemy.Column("title", sqlalchemy.String(200), nullable=False),
    sqlalchemy.Column("content", sqlalchemy.Text, nullable=False),
    sqlalchemy.Column("category", sqlalchemy.String(32), nullable=False),
    sqlalchemy.Column("priority", sqlalchemy.String(16), nullable=False),
    sqlalchemy.Column("status", sqlalchemy.String(16), nullable=False, default="open"),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime(timezone=True)),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime(timezone=True)),
)

response_table = sqlalchemy.Table(
    "comment_responses",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.String(36), primary_key=True),
    sqlalchemy.Column(
        "comment_id", sqlalchemy.ForeignKey("comments.id", ondelete="CASCADE"), nullable=False, index=True
    ),
    sqlalchemy.Column("user_id", sqlalchemy.String(36), nullable=False),
    sqlalchemy.Column("content", sqlalchemy.Text, nullable=False),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime(timezone=True)),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime(timezone=True)),
)

like_table = sqlalchemy.Table(
    "comment_likes",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.String(36), primary_key=True),
    sqlalchemy.Column(
        "comment_id", sqlalchemy.ForeignKey("comments.id", ondelete="CASCADE"), nullable=False
    ),
    sqlalchemy.Column("user_id", sqlalchemy.String(36), nullable=False),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime(timezone=True)),
    sqlalchemy.UniqueConstraint("comment_id", "user_id", name="uq_comment_likes_comment_user"),
)


def insert_ignore_duplicates(table: sqlalchemy.Table, index_elements: list, **values):
    """INSERT ... ON CONFLICT DO NOTHING RETURNING *, for the configured dialect."""
    dialect = postgresql if database.url.dialect.startswith("postgres") else sqlite
    return (
        dialect.insert(table)
        .values(**values)
        .on_conflict_do_nothing(index_elements=index_elements)
        .returning(*table.c)
    )


# The hosted Postgres schema (including the stats functions) is managed by the
# backend service; only local SQLite databases get their tables created here.
if (config.DATABASE_URL or "").startswith("sqlite"):
    engine = sqlalchemy.create_engine(
        config.DATABASE_URL, connect_args={"check_same_thread": False}
    )
    metadata.create_all(engine)

database = databases.Database(
    config.DATABASE_URL, force_rollback=config.DB_FORCE_ROLL_BACK
)
