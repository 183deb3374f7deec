import os

os.environ.setdefault('OMF_SKIP_BOOTSTRAP', '1')

import pytest

from oldmanfooty import create_app
from oldmanfooty.config import Config
from oldmanfooty.extensions import db
from oldmanfooty.models import Carnival, Club, User, utcnow
from oldmanfooty.services import catalog
from oldmanfooty.services.mysideline_fetcher import RawPayload


class TestConfig(Config):
    __test__ = False

    TESTING = True
    SECRET_KEY = 'test-secret'
    WTF_CSRF_ENABLED = False
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    BOOTSTRAP_TABLES = False
    LOG_LEVEL = 'DEBUG'

    MYSIDELINE_SYNC_ENABLED = True
    MYSIDELINE_SYNC_SCHEDULE = '0 3 * * *'
    MYSIDELINE_URL = 'https://profile.mysideline.com.au/register/clubsearch/?criteria=Masters'
    MYSIDELINE_REQUEST_TIMEOUT = 5_000
    MYSIDELINE_RETRY_ATTEMPTS = 3
    MYSIDELINE_RETRY_BACKOFF = 0
    MYSIDELINE_USE_MOCK = False
    MYSIDELINE_STALENESS_THRESHOLD = 3_600_000
    MYSIDELINE_STARTUP_DELAY = 0
    MYSIDELINE_ALLOW_MANUAL_WHEN_DISABLED = True
    MYSIDELINE_RUN_BUDGET = None
    MYSIDELINE_INLINE_RUNS = True


CARD = (
    '<div class="carnival-item" data-carnival-id="{id}"{state}>'
    '<h3>{title}</h3>'
    '<p>{location}</p>'
    '<time datetime="{date}">{date}</time>'
    '</div>'
)


def carnival_page(*cards):
    """Build a club-search listing from (id, title, location, date, state) tuples."""
    body = ''.join(
        CARD.format(
            id=card_id,
            title=title,
            location=location,
            date=event_date,
            state=f' data-state="{state}"' if state else '',
        )
        for card_id, title, location, event_date, state in cards
    )
    return f'<html><body><div class="carnival-list">{body}</div></body></html>'.encode('utf-8')


FIRST_IMPORT = (
    ('A1', 'Brisbane Masters Cup', 'Dolphin Oval, Redcliffe, QLD', '2025-08-15', 'QLD'),
    ('B2', 'NSW Masters Grand Final', 'Leichhardt Oval, Lilyfield, NSW', '2025-09-20', None),
)


def html_payload(content, attempts=1):
    return RawPayload(
        content=content,
        content_type='text/html',
        url=TestConfig.MYSIDELINE_URL,
        attempts=attempts,
    )


@pytest.fixture()
def app(tmp_path):
    class _Config(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'oldmanfooty.db'}"

    app = create_app(_Config)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def tx(app):
    with catalog.begin_sync_transaction() as session:
        yield session


@pytest.fixture()
def system_user(app):
    with catalog.begin_sync_transaction() as session:
        user = catalog.ensure_system_user(session)
    return user


def make_club(name='Redcliffe Dolphins Masters', state='QLD', **kwargs):
    club = Club(club_name=name, state=state, **kwargs)
    db.session.add(club)
    db.session.commit()
    return club


def make_user(email, club=None, password='password123', **kwargs):
    user = User(email=email, club_id=club.id if club else None, **kwargs)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


def make_imported_carnival(author, my_sideline_id='A1', **kwargs):
    values = {
        'title': 'Brisbane Masters Cup',
        'my_sideline_title': 'Brisbane Masters Cup',
        'state': 'QLD',
        'organiser_contact_email': 'organiser@brisbanemasters.com.au',
        'original_my_sideline_contact_email': 'organiser@brisbanemasters.com.au',
        'is_manually_entered': False,
        'last_my_sideline_sync': utcnow(),
    }
    values.update(kwargs)
    carnival = Carnival(my_sideline_id=my_sideline_id, created_by_user_id=author.id, **values)
    db.session.add(carnival)
    db.session.commit()
    return carnival


def login(client, user):
    with client.session_transaction() as sess:
        sess['_user_id'] = user.id
        sess['_fresh'] = True


@pytest.fixture()
def club(app):
    return make_club()


@pytest.fixture()
def admin_user(app):
    return make_user('admin@oldmanfooty.au', is_admin=True, first_name='Ada', last_name='Admin')


@pytest.fixture()
def delegate(app, club):
    return make_user('delegate@redcliffe.com.au', club=club, is_primary_delegate=True, first_name='Dee')


@pytest.fixture()
def admin_client(client, admin_user):
    login(client, admin_user)
    return client


@pytest.fixture()
def delegate_client(client, delegate):
    login(client, delegate)
    return client
