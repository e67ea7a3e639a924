from flask import Blueprint, current_app, g
from flask_login import LoginManager, login_required, current_user
from werkzeug.security import generate_password_hash, check_password_hash
from functools import wraps
from datetime import timedelta
import jwt
import re

from bforms.models import db, User, ROLE_ADMIN, get_now
from bforms.errors import Unauthenticated, Forbidden, ValidationError
from bforms.schemas import user_to_dict
from bforms.utils import api_response, commit, json_body

auth = Blueprint('auth', __name__, url_prefix='/api/auth')

login_manager = LoginManager()

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
MIN_PASSWORD_LENGTH = 6


# ==========================================
# IDENTITY RESOLVER
# ==========================================

def issue_token(user):
    now = get_now()
    days = current_app.config.get('JWT_EXPIRES_DAYS', 7)
    return jwt.encode({
        'user_id': user.id,
        'iat': now,
        'exp': now + timedelta(days=days)
    }, current_app.config['SECRET_KEY'], algorithm="HS256")

def resolve_identity(token):
    """
    Turns a bearer token into a User.
    Raises Unauthenticated when the token is absent, malformed, expired,
    or points at a user that no longer exists or is blocked.
    """
    if not token:
        raise Unauthenticated('No token, authorization denied')

    try:
        data = jwt.decode(token, current_app.config['SECRET_KEY'], algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated('Token has expired')
    except jwt.InvalidTokenError:
        raise Unauthenticated('Invalid token')

    user_id = data.get('user_id')
    user = db.session.get(User, str(user_id)) if user_id else None
    if not user:
        raise Unauthenticated('Token is not valid')
    if user.is_blocked:
        raise Unauthenticated('Your account has been blocked')
    return user

def bearer_token(req):
    auth_header = req.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header.split(' ', 1)[1].strip() or None
    return None

@login_manager.request_loader
def load_user_from_request(req):
    token = bearer_token(req)
    if not token:
        return None
    try:
        return resolve_identity(token)
    except Unauthenticated as e:
        # Optional-auth routes continue as anonymous; login_required reports the reason
        g.auth_error = e.message
        current_app.logger.warning(f"Token rejected: {e.message}")
        return None

@login_manager.unauthorized_handler
def unauthorized():
    raise Unauthenticated(g.get('auth_error') or 'No token, authorization denied')

def admin_required(f):
    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if current_user.role != ROLE_ADMIN:
            raise Forbidden('Access denied. Admin rights required.')
        return f(*args, **kwargs)
    return decorated


# ==========================================
# ROUTES
# ==========================================

@auth.route('/register', methods=['POST'])
def register():
    data = json_body()
    name = (data.get('name') or '').strip()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not name:
        raise ValidationError('Name is required')
    if not EMAIL_RE.match(email):
        raise ValidationError('Please include a valid email')
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'Please enter a password with {MIN_PASSWORD_LENGTH} or more characters')

    if User.query.filter_by(email=email).first():
        raise ValidationError('User already exists')

    user = User(
        name=name,
        email=email,
        password_hash=generate_password_hash(password),
        last_login=get_now()
    )
    db.session.add(user)
    db.session.flush()

    # Grants made to this email before the account existed now point at it
    from bforms.services.template_service import TemplateService
    claimed = TemplateService.claim_pending_shares(user)

    commit()
    current_app.logger.info(f"User registered: {user.id} ({claimed} pending shares claimed)")

    return api_response(data={'token': issue_token(user), 'user': user_to_dict(user)}, status=201)

@auth.route('/login', methods=['POST'])
def login():
    data = json_body()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        raise ValidationError('Email and password are required')

    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, password):
        current_app.logger.warning(f"Login failed for {email}")
        raise Unauthenticated('Invalid credentials')

    if user.is_blocked:
        raise Forbidden('Your account has been blocked')

    user.last_login = get_now()
    commit()

    return api_response(data={'token': issue_token(user), 'user': user_to_dict(user)})

@auth.route('/me', methods=['GET'])
@login_required
def me():
    return api_response(data=user_to_dict(current_user))
