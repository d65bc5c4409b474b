import enum
from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from schoolchat.core.database import Base


class Role(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPERADMIN = "SUPERADMIN"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def at_least(self, other: "Role") -> bool:
        return self.rank >= Role(other).rank

    def outranks(self, other: "Role") -> bool:
        return self.rank > Role(other).rank


_RANKS = {Role.USER: 0, Role.ADMIN: 1, Role.SUPERADMIN: 2}


class User(Base):
    __tablename__ = "users"

    id              = Column(Integer, primary_key=True)
    username        = Column(String, unique=True, index=True, nullable=False)
    display_name    = Column(String, nullable=False)
    role            = Column(
                        SQLEnum(Role, name="role_enum"),
                        default=Role.USER,
                        nullable=False,
                     )
    hashed_password = Column(String, nullable=False)
    must_change_password = Column(Boolean, default=True, nullable=False)

    class_name         = Column("class", String, nullable=True, index=True)
    roll               = Column(String, nullable=True)
    dob                = Column(Date, nullable=True)
    father_name        = Column(String, nullable=True)
    mother_name        = Column(String, nullable=True)
    class_teacher_name = Column(String, nullable=True)

    created_at = Column(
    DateTime(timezone=True),
    default=lambda: datetime.now(timezone.utc)
    )

    chats = relationship("Chat", back_populates="user", cascade="all, delete-orphan")
