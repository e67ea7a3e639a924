import pytest
from werkzeug.security import generate_password_hash

from bforms.app import create_app
from bforms.auth import issue_token
from bforms.models import db, User, ROLE_USER

TEST_CONFIG = {
    'TESTING': True,
    'SECRET_KEY': 'test-secret-key-for-the-bforms-suite',
    'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    'CLIENT_URL': 'http://forms.test',
    'LOG_LEVEL': 'WARNING',
    'JIRA_DOMAIN': None,
    'JIRA_EMAIL': None,
    'JIRA_API_TOKEN': None,
    'SF_CLIENT_ID': None,
    'SF_CLIENT_SECRET': None,
    'SF_USERNAME': None,
    'SF_PASSWORD': None,
}


@pytest.fixture
def app():
    app = create_app(dict(TEST_CONFIG))
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make_user(email, name=None, role=ROLE_USER, password='secret123', blocked=False):
        with app.app_context():
            user = User(
                name=name or email.split('@')[0],
                email=email.lower(),
                password_hash=generate_password_hash(password),
                role=role,
                is_blocked=blocked
            )
            db.session.add(user)
            db.session.commit()
            return user.id
    return _make_user


@pytest.fixture
def auth_headers(app):
    def _auth_headers(user_id):
        with app.app_context():
            user = db.session.get(User, user_id)
            return {'Authorization': f"Bearer {issue_token(user)}"}
    return _auth_headers
