from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class ReferenceCounter(Base):
    __tablename__ = "reference_counters"

    prefix: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, default=0)
