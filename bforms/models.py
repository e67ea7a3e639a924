from datetime import datetime
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
import uuid

def get_now():
    return datetime.utcnow()

def new_id():
    return str(uuid.uuid4())

db = SQLAlchemy()

# Enums (plain strings, portable across SQLite/Postgres)
ROLE_USER = 'user'
ROLE_ADMIN = 'admin'
ROLES = (ROLE_USER, ROLE_ADMIN)

VISIBILITY_PRIVATE = 'private'
VISIBILITY_PUBLIC = 'public'

LEVEL_VIEW = 'view'
LEVEL_RESPOND = 'respond'
LEVEL_EDIT = 'edit'
SHARE_LEVELS = (LEVEL_VIEW, LEVEL_RESPOND, LEVEL_EDIT)

QUESTION_TYPES = ('text', 'textarea', 'number', 'select', 'radio', 'checkbox', 'email', 'date')
CHOICE_TYPES = ('select', 'radio', 'checkbox')


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False) # Always lowercase
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER)
    is_blocked = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=get_now)
    last_login = db.Column(db.DateTime, nullable=True)

    # Salesforce sync state
    sf_account_id = db.Column(db.String(18), nullable=True)
    sf_contact_id = db.Column(db.String(18), nullable=True)
    sf_synced_at = db.Column(db.DateTime, nullable=True)

    templates = db.relationship('Template', backref='owner', lazy=True)

    @property
    def is_admin(self):
        return self.role == ROLE_ADMIN

    @property
    def is_active(self):
        # Flask-Login treats inactive users as not logged in
        return not self.is_blocked


class Template(db.Model):
    __tablename__ = 'template'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default='')
    tags = db.Column(db.JSON, default=list)
    questions = db.Column(db.JSON, nullable=False, default=list) # Ordered list of question dicts
    owner_id = db.Column(db.String(36), db.ForeignKey('user.id'), nullable=False)
    visibility = db.Column(db.String(10), nullable=False, default=VISIBILITY_PRIVATE)
    is_archived = db.Column(db.Boolean, nullable=False, default=False)
    share_token = db.Column(db.String(64), unique=True, nullable=True)
    created_at = db.Column(db.DateTime, default=get_now)
    updated_at = db.Column(db.DateTime, default=get_now, onupdate=get_now)

    shares = db.relationship('TemplateShare', backref='template', lazy=True, cascade='all, delete-orphan')
    responses = db.relationship('Response', backref='template', lazy='dynamic')

    @property
    def is_public(self):
        return self.visibility == VISIBILITY_PUBLIC

    @property
    def state(self):
        if self.is_archived:
            return 'archived'
        return 'published' if self.is_public else 'draft'

    def share_for(self, email):
        email = (email or '').strip().lower()
        for share in self.shares:
            if share.grantee_email == email:
                return share
        return None


class TemplateShare(db.Model):
    """
    A per-grantee access grant.

    grantee_user_id is NULL while the grantee has not registered (grant by
    email) and is filled once the email resolves to a user (grant by
    identity). grantee_email is kept in both cases and is the upsert key.
    """
    __tablename__ = 'template_share'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    template_id = db.Column(db.String(36), db.ForeignKey('template.id'), nullable=False)
    grantee_email = db.Column(db.String(120), nullable=False)
    grantee_user_id = db.Column(db.String(36), db.ForeignKey('user.id'), nullable=True)
    level = db.Column(db.String(10), nullable=False, default=LEVEL_RESPOND)
    created_at = db.Column(db.DateTime, default=get_now)
    updated_at = db.Column(db.DateTime, default=get_now, onupdate=get_now)

    __table_args__ = (db.UniqueConstraint('template_id', 'grantee_email', name='unique_share'),)

    grantee = db.relationship('User', foreign_keys=[grantee_user_id])

    @property
    def is_pending(self):
        return self.grantee_user_id is None


class Response(db.Model):
    __tablename__ = 'response'
    seq = db.Column(db.Integer, primary_key=True, autoincrement=True) # Insertion order, breaks created_at ties
    id = db.Column(db.String(36), unique=True, nullable=False, default=new_id)
    template_id = db.Column(db.String(36), db.ForeignKey('template.id'), nullable=False, index=True)
    respondent_id = db.Column(db.String(36), db.ForeignKey('user.id'), nullable=True, index=True)
    answers = db.Column(db.JSON, nullable=False) # question_id -> value
    created_at = db.Column(db.DateTime, default=get_now, index=True)

    respondent = db.relationship('User', foreign_keys=[respondent_id])
