"""SQLAlchemy tables and engine/session helpers for the SQL ledger store."""
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Engine,
    Index,
    Integer,
    Numeric,
    String,
    create_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class RegistrationRow(Base):
    """
    Registrations table.

    Only the payment columns live here; the rest of the registration
    belongs to the registration workflow.
    """

    __tablename__ = "registrations"

    registration_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    attendee_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    fee_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    status_reason: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    # ISO-8601 text, kept verbatim so legacy values survive a round trip
    status_updated_at: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('unpaid', 'pending_confirmation', 'paid_confirmed')",
            name="valid_registration_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<RegistrationRow(id={self.registration_id}, status={self.status})>"


class PaymentTransactionRow(Base):
    """
    Payment transactions table.

    ``id`` preserves insertion order. ``gateway_reference`` is unique;
    legacy records without a reference store NULL so several may coexist.
    """

    __tablename__ = "payment_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    registration_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[str] = mapped_column(String(64), nullable=False)
    confirmed_at: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gateway_reference: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )

    __table_args__ = (
        CheckConstraint("amount IS NULL OR amount >= 0", name="non_negative_amount"),
        CheckConstraint(
            "status IN ('initiated', 'pending_confirmation', 'succeeded', 'failed', 'declined')",
            name="valid_payment_status",
        ),
        CheckConstraint("length(currency) = 3", name="valid_currency"),
        Index("idx_payment_transactions_registration_order", "registration_id", "id"),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentTransactionRow(payment_id={self.payment_id}, "
            f"reference={self.gateway_reference}, status={self.status})>"
        )


def create_engine_from_url(database_url: str, echo: bool = False) -> Engine:
    """
    Create the database engine.

    SQLite in-memory databases share one connection across threads,
    otherwise each new connection would see an empty database.
    """
    if database_url.startswith("sqlite"):
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(
                database_url,
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(
            database_url, echo=echo, connect_args={"check_same_thread": False}
        )
    return create_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,  # Verify connections before using
        pool_recycle=3600,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, expire_on_commit=False, autoflush=False)


def init_db(engine: Engine) -> None:
    """Create all ledger tables that don't exist yet."""
    Base.metadata.create_all(engine)
