from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from ..core.config import get_settings

DATABASE_URL = get_settings().database_url
# mailbox workers share the engine from their own threads
engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False} if DATABASE_URL.startswith('sqlite') else {})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

def init_db(bind=None):
    """Create any missing tables on ``bind`` (defaults to the app engine)."""
    from ..models import user_model, account_model, email_model  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)

init_db()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
