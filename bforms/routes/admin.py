from flask import Blueprint, current_app
from flask_login import current_user

from bforms.auth import admin_required
from bforms.models import db, User, ROLES
from bforms.errors import NotFound, ValidationError
from bforms.schemas import user_to_dict
from bforms.utils import api_response, commit, json_body, parse_id

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')

def _get_user_or_404(user_id):
    user = db.session.get(User, parse_id(user_id, 'user id'))
    if not user:
        raise NotFound('User not found')
    return user

def _not_self(user, action):
    if user.id == current_user.id:
        raise ValidationError(f"You cannot {action} your own account")

@admin_bp.route('/users', methods=['GET'])
@admin_required
def users():
    all_users = User.query.order_by(User.created_at.desc()).all()
    return api_response(data=[user_to_dict(u) for u in all_users])

@admin_bp.route('/users/<user_id>/block', methods=['POST'])
@admin_required
def block_user(user_id):
    user = _get_user_or_404(user_id)
    _not_self(user, 'block')
    user.is_blocked = True
    commit()
    current_app.logger.info(f"User {user.id} blocked by {current_user.id}")
    return api_response(data=user_to_dict(user))

@admin_bp.route('/users/<user_id>/unblock', methods=['POST'])
@admin_required
def unblock_user(user_id):
    user = _get_user_or_404(user_id)
    user.is_blocked = False
    commit()
    current_app.logger.info(f"User {user.id} unblocked by {current_user.id}")
    return api_response(data=user_to_dict(user))

@admin_bp.route('/users/<user_id>/role', methods=['POST'])
@admin_required
def change_role(user_id):
    data = json_body()
    role = data.get('role')
    if role not in ROLES:
        raise ValidationError(f"Invalid role: {role}")

    user = _get_user_or_404(user_id)
    if role != user.role:
        _not_self(user, 'change the role of')
    user.role = role
    commit()
    current_app.logger.info(f"User {user.id} role set to {role} by {current_user.id}")
    return api_response(data=user_to_dict(user))
