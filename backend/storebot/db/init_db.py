"""Create all tables. Run on app startup."""
from sqlalchemy.engine import Engine

from storebot.db.base import Base
from storebot.db.session import engine as default_engine
from storebot.models import user, product, order, processed_deposit  # noqa: F401 - register models


def init_db(engine: Engine | None = None) -> None:
    Base.metadata.create_all(bind=engine or default_engine)
