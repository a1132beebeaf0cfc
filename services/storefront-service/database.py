"""Database connection and session management."""
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator
import logging

from config import DATABASE_URL, SEED_DEMO_DATA, ADMIN_EMAIL, ADMIN_PASSWORD
from models import Base, Category, Product, User, Role
from security import hash_password

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_size": 10,
        "max_overflow": 20,  # Burst traffic during sales
        "pool_pre_ping": True,  # Verify connections before use
        "pool_recycle": 3600,  # Recycle connections after 1 hour
        "pool_timeout": 30,  # Wait max 30 seconds for a connection
    }


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def seed_catalog(db: Session) -> None:
    """Insert a small demo catalog when the store is empty."""
    if db.query(Category).count() > 0:
        return

    handicrafts = Category(name="Handicrafts", slug="handicrafts", description="Handmade decor")
    textiles = Category(name="Textiles", slug="textiles", description="Sarees and fabrics")
    db.add_all([handicrafts, textiles])
    db.flush()

    db.add_all([
        Product(title="Brass Lamp", description="Traditional brass oil lamp",
                price=Decimal("1299.00"), stock=25, category_id=handicrafts.id,
                images=[], featured=True),
        Product(title="Tanjore Painting", description="Gold foil painting on wood",
                price=Decimal("4599.00"), stock=5, category_id=handicrafts.id, images=[]),
        Product(title="Silk Saree", description="Kanchipuram silk saree",
                price=Decimal("8999.00"), stock=10, category_id=textiles.id, images=[],
                variants=[{"type": "Color", "options": ["Red", "Green", "Gold"]}]),
        Product(title="Cotton Towel", description="Handloom cotton towel",
                price=Decimal("349.00"), stock=200, category_id=textiles.id, images=[]),
    ])
    db.commit()
    logger.info("Seeded database with sample catalog")


def ensure_admin(db: Session, email: str, password: str) -> None:
    """Create the configured administrator account if it does not exist."""
    email = email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        return
    db.add(User(
        name="Administrator",
        email=email,
        password_hash=hash_password(password),
        role=Role.ADMIN
    ))
    db.commit()
    logger.info("Created administrator account", extra={"email": email})


def init_db() -> None:
    """Initialize database tables and seed data."""
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        if SEED_DEMO_DATA:
            seed_catalog(db)
        if ADMIN_EMAIL and ADMIN_PASSWORD:
            ensure_admin(db, ADMIN_EMAIL, ADMIN_PASSWORD)
    finally:
        db.close()
