from collections.abc import Generator, Iterator
from contextlib import contextmanager
from typing import Annotated

from fastapi import Depends
from sqlmodel import SQLModel, Session, create_engine, select

from config import DATABASE_URL, SQL_ECHO

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    echo=SQL_ECHO,
    connect_args=connect_args,
)


def create_db_and_tables() -> None:
    """Create all tables in the database if they don't exist."""
    SQLModel.metadata.create_all(engine)


def get_session() -> Generator[Session, None, None]:
    """Yield a database session for dependency injection."""
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_session)]


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """
    Run a block of writes as one transaction.
    Commits when the block exits normally, rolls everything back otherwise.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def get_for_update(session: Session, model, ident):
    """
    Load one row by primary key and lock it until the transaction ends.
    Always re-reads the row so status checks see the committed value.
    """
    statement = (
        select(model)
        .where(model.id == ident)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return session.exec(statement).first()
