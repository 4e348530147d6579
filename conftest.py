import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
import auth_utils
import main
import models


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    main.app.dependency_overrides[get_db] = override_get_db
    # no context manager: startup would touch the real database
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def _make_user(db, email, role=models.ROLE_USER, first_name="Test", last_name="User"):
    user = models.User(
        email=email,
        hashed_password="not-a-real-hash",
        first_name=first_name,
        last_name=last_name,
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin_user(db):
    return _make_user(db, "admin@example.com", role=models.ROLE_ADMIN, first_name="Admin")


@pytest.fixture
def member(db):
    return _make_user(db, "reader@example.com", first_name="Regular")


@pytest.fixture
def other_member(db):
    return _make_user(db, "other@example.com", first_name="Other")


@pytest.fixture
def make_book(db, admin_user):
    def _make_book(title="Dune", total_copies=5, available_copies=None, is_active=True):
        book = models.Book(
            title=title,
            author="Frank Herbert",
            genre="Science Fiction",
            total_copies=total_copies,
            available_copies=total_copies if available_copies is None else available_copies,
            is_active=is_active,
            added_by=admin_user.id,
        )
        db.add(book)
        db.commit()
        db.refresh(book)
        return book
    return _make_book


@pytest.fixture
def book(make_book):
    return make_book()


def auth_headers(user):
    token = auth_utils.create_access_token({"sub": user.email, "role": auth_utils.role_of(user)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def member_headers(member):
    return auth_headers(member)


@pytest.fixture
def other_headers(other_member):
    return auth_headers(other_member)
