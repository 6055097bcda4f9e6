# subscription_activation/models/activation_code.py

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

class ActivationCode(Base):
    __tablename__ = "activation_codes"
    __table_args__ = (
        CheckConstraint("status in ('unused', 'used')", name="ck_activation_codes_status"),
        # used_at is set exactly when the code is used
        CheckConstraint("(status = 'used') = (used_at is not null)", name="ck_activation_codes_used_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), unique=True, index=True, nullable=False)
    subscription_id = Column(String(64), index=True, nullable=False)
    status = Column(String(16), nullable=False, default="unused")
    issued_at = Column(DateTime(timezone=True), index=True, nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    customer_email = Column(String(320), nullable=True)
    order_id = Column(String(64), nullable=True)
    activate_url = Column(Text, nullable=True)
    qr_url = Column(Text, nullable=True)  # data:image/png;base64,...
    paused = Column(Boolean, nullable=False, default=False)
