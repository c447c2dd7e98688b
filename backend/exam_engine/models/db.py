from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class TimerState(Base):
    __tablename__ = "timer_states"

    # namespace scopes entries per candidate/device; "" for single-device use
    namespace: Mapped[str] = mapped_column(String(255), primary_key=True, default="")
    assessment_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    time_left_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    saved_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
