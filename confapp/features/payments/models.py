"""
Payment intent model.

Intents move CREATED -> PAID | FAILED | EXPIRED and never leave a terminal
state. Creating a new intent supersedes the previous ones for the submission;
superseded rows are kept as history.
"""
import enum
from sqlalchemy import String, ForeignKey, Boolean, Integer, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from confapp.core.database.base import Base, TimestampMixin, generate_ulid


class PaymentStatus(str, enum.Enum):
    CREATED = "CREATED"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.EXPIRED})


class PaymentIntent(Base, TimestampMixin):
    __tablename__ = "payment_intents"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    org_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    conference_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("conferences.id", ondelete="CASCADE"), nullable=False, index=True
    )
    submission_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    author_user_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False)

    provider: Mapped[str] = mapped_column(String(50), default="stub", nullable=False)
    provider_ref: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus), default=PaymentStatus.CREATED, nullable=False
    )
    # Only the one non-superseded intent per submission is authoritative
    is_superseded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<PaymentIntent(id={self.id}, submission_id={self.submission_id}, status={self.status})>"
