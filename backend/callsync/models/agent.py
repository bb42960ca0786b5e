from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from callsync.core.database import Base


class Agent(Base):
    __tablename__ = "agents"

    id = Column(Integer, primary_key=True)
    retell_agent_id = Column(String(128), unique=True, nullable=True, index=True)
    name = Column(String(255))
    rate_per_minute = Column(Numeric(10, 4), nullable=True)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user_agents = relationship("UserAgent", back_populates="agent", order_by="UserAgent.id")


class UserAgent(Base):
    __tablename__ = "user_agents"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    company_id = Column(String(64), nullable=True)
    agent_id = Column(Integer, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False, index=True)
    is_primary = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    agent = relationship("Agent", back_populates="user_agents")
