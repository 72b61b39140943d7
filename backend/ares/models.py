from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Integer, String, Text, UniqueConstraint, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import NullPool

from .config import settings
from .schemas import (
    ColumnDictionaryItem,
    DashboardOut,
    DashboardWidget,
    DataSources,
    InsightComment,
    InsightOut,
    KnowledgeBankEntryOut,
    KnowledgeBase,
    KnowledgeQuality,
    MetricDefinition,
    TableDictionaryItem,
)
from .security import decrypt_json, decrypt_text, encrypt_json
from .tokens import license_for, start_token_bucket


class Base(DeclarativeBase):
    pass


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    account_type: Mapped[str] = mapped_column(String, nullable=False, default="INDIVIDUAL")  # INDIVIDUAL | BUSINESS
    license_tier: Mapped[str] = mapped_column(String, nullable=False, default="FREE")
    token_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_reset_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    org_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False, default="member")  # 'admin' | 'member'
    llm_provider: Mapped[str] = mapped_column(String, nullable=False, default="OPENAI")
    api_key_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active_data_source: Mapped[str] = mapped_column(String, nullable=False, default="localSql")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PodAccess(Base):
    __tablename__ = "pod_access"
    __table_args__ = (UniqueConstraint("user_id", "pod_id", name="uq_pod_access_user_pod"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    pod_id: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False, default="viewer")  # viewer | editor | admin
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Pod(Base):
    __tablename__ = "pods"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    org_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    knowledge_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    # Connection strings and service-account JSON, Fernet-encrypted as one JSON document
    data_sources_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quality_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    quality_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quality_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    quality_evaluated_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    chat_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    chat_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Dashboard(Base):
    __tablename__ = "dashboards"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    pod_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    widgets_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class KnowledgeBankEntry(Base):
    __tablename__ = "knowledge_bank_entries"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    pod_id: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    date: Mapped[str] = mapped_column(String, nullable=False)
    highlights: Mapped[str] = mapped_column(Text, nullable=False)
    lowlights: Mapped[str] = mapped_column(Text, nullable=False)
    doc_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    pod_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    conversation_id: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)  # user | assistant
    content: Mapped[str] = mapped_column(Text, nullable=False)
    sql: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    chart_hint: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Feedback(Base):
    __tablename__ = "feedback"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    conversation_id: Mapped[str] = mapped_column(String, nullable=False)
    message_id: Mapped[str] = mapped_column(String, nullable=False)
    rating: Mapped[str] = mapped_column(String, nullable=False)  # up | down
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Insight(Base):
    __tablename__ = "insights"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    pod_id: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    likes_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")  # user ids
    comments_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# --- Engine & Session (SQLite metadata DB) ---
_DATA_DIR = Path(settings.metadata_db_path).resolve().parent
_DATA_DIR.mkdir(parents=True, exist_ok=True)

engine_meta = create_engine(
    f"sqlite+pysqlite:///{settings.metadata_db_path}",
    future=True,
    connect_args={"check_same_thread": False},
    pool_pre_ping=True,
    poolclass=NullPool,
)
SessionLocal = sessionmaker(bind=engine_meta, autoflush=False, autocommit=False)


def init_db() -> None:
    Base.metadata.create_all(bind=engine_meta)


def iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


# --- Organizations & users ---
def create_org_with_admin(db, name: str, account_type: str, admin_name: str, admin_email: str) -> tuple[Organization, User]:
    org = Organization(id=str(uuid4()), name=name, account_type=account_type, license_tier=license_for(account_type))
    start_token_bucket(org)
    user = User(id=str(uuid4()), org_id=org.id, name=admin_name, email=admin_email.strip().lower(), role="admin")
    db.add(org)
    db.add(user)
    db.commit()
    db.refresh(org)
    db.refresh(user)
    return org, user


def user_api_key(user: User) -> str:
    if not user.api_key_encrypted:
        return ""
    return decrypt_text(user.api_key_encrypted) or ""


# --- Pods ---
def default_knowledge() -> KnowledgeBase:
    return KnowledgeBase(
        tableDictionary=[TableDictionaryItem()],
        columnDictionary=[ColumnDictionaryItem()],
        metrics=[MetricDefinition()],
    )


def create_pod(db, org_id: str, name: str, creator_id: str) -> Pod:
    pod = Pod(
        id=str(uuid4()),
        org_id=org_id,
        name=name,
        knowledge_json=default_knowledge().model_dump_json(),
        data_sources_encrypted=encrypt_json(DataSources().model_dump()),
        created_by=creator_id,
    )
    db.add(pod)
    db.add(PodAccess(id=str(uuid4()), user_id=creator_id, pod_id=pod.id, role="admin"))
    db.commit()
    db.refresh(pod)
    return pod


def delete_pod(db, pod: Pod) -> None:
    pod_id = pod.id
    conv_ids = [c.id for c in db.query(Conversation.id).filter(Conversation.pod_id == pod_id).all()]
    if conv_ids:
        db.query(ChatMessage).filter(ChatMessage.conversation_id.in_(conv_ids)).delete(synchronize_session=False)
        db.query(Feedback).filter(Feedback.conversation_id.in_(conv_ids)).delete(synchronize_session=False)
    for model in (Dashboard, KnowledgeBankEntry, PodAccess, Conversation, Insight):
        db.query(model).filter(model.pod_id == pod_id).delete()
    db.delete(pod)
    db.commit()


def load_knowledge(pod: Pod) -> KnowledgeBase:
    try:
        return KnowledgeBase.model_validate(json.loads(pod.knowledge_json or "{}"))
    except ValueError:
        return default_knowledge()


def save_knowledge(db, pod: Pod, knowledge: KnowledgeBase) -> KnowledgeBase:
    pod.knowledge_json = knowledge.model_dump_json()
    db.commit()
    return knowledge


def load_data_sources(pod: Pod) -> DataSources:
    raw = decrypt_json(pod.data_sources_encrypted)
    if not isinstance(raw, dict):
        return DataSources()
    return DataSources.model_validate(raw)


def save_data_sources(db, pod: Pod, sources: DataSources) -> DataSources:
    pod.data_sources_encrypted = encrypt_json(sources.model_dump())
    db.commit()
    return sources


def pod_quality(pod: Pod) -> Optional[KnowledgeQuality]:
    if pod.quality_score is None:
        return None
    return KnowledgeQuality(
        score=int(pod.quality_score),
        notes=pod.quality_notes or "",
        updatedAt=iso(pod.quality_updated_at),
        evaluatedBy=pod.quality_evaluated_by or "admin",
    )


# --- Dashboards ---
def dashboard_to_out(d: Dashboard) -> DashboardOut:
    widgets = [DashboardWidget.model_validate(w) for w in json.loads(d.widgets_json or "[]")]
    return DashboardOut(
        id=d.id,
        name=d.name,
        description=d.description,
        widgets=widgets,
        createdAt=iso(d.created_at),
        updatedAt=iso(d.updated_at),
    )


def list_dashboards(db, pod_id: str) -> List[DashboardOut]:
    rows = db.query(Dashboard).filter(Dashboard.pod_id == pod_id).order_by(Dashboard.created_at.asc()).all()
    return [dashboard_to_out(d) for d in rows]


# --- Knowledge bank ---
def bank_entry_to_out(e: KnowledgeBankEntry) -> KnowledgeBankEntryOut:
    return KnowledgeBankEntryOut(
        id=e.id,
        title=e.title,
        date=e.date,
        highlights=e.highlights,
        lowlights=e.lowlights,
        docText=e.doc_text,
        createdAt=iso(e.created_at),
        createdBy=e.created_by,
    )


def list_bank_entries(db, pod_id: str) -> List[KnowledgeBankEntryOut]:
    rows = (
        db.query(KnowledgeBankEntry)
        .filter(KnowledgeBankEntry.pod_id == pod_id)
        .order_by(KnowledgeBankEntry.created_at.asc())
        .all()
    )
    return [bank_entry_to_out(e) for e in rows]


# --- Insights ---
def insight_to_out(i: Insight) -> InsightOut:
    return InsightOut(
        id=i.id,
        userId=i.user_id,
        content=i.content,
        createdAt=iso(i.created_at),
        likes=json.loads(i.likes_json or "[]"),
        comments=[InsightComment.model_validate(c) for c in json.loads(i.comments_json or "[]")],
    )


def list_insights(db, pod_id: str) -> List[InsightOut]:
    rows = db.query(Insight).filter(Insight.pod_id == pod_id).order_by(Insight.created_at.desc()).all()
    return [insight_to_out(i) for i in rows]


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
