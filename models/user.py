from models.base_model import Base, BaseModel
from sqlalchemy import Column, String
from sqlalchemy.orm import relationship


class User(BaseModel, Base):
    __tablename__ = "users"
    username = Column(String(64), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)

    # rows are removed by ON DELETE CASCADE in the database
    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="user",
        passive_deletes=True
    )
    password_reset_tokens = relationship(
        "PasswordResetToken",
        back_populates="user",
        passive_deletes=True
    )

    @property
    def password(self):
        raise AttributeError("Password: Write-only field")
