from flask import Blueprint, request
from flask_login import login_required, current_user

from bforms.services.template_service import TemplateService
from bforms.schemas import template_to_dict, share_to_dict, response_to_dict
from bforms.utils import api_response, json_body

templates_bp = Blueprint('templates', __name__, url_prefix='/api/templates')

# ==========================================
# LISTINGS
# ==========================================

@templates_bp.route('/my', methods=['GET'])
@login_required
def my_templates():
    templates = TemplateService.list_owned(current_user)
    return api_response(data=[template_to_dict(t, current_user) for t in templates])

@templates_bp.route('/shared', methods=['GET'])
@login_required
def shared_with_me():
    templates = TemplateService.list_shared_with(current_user)
    return api_response(data=[template_to_dict(t, current_user) for t in templates])

@templates_bp.route('/public', methods=['GET'])
def public_templates():
    templates = TemplateService.list_public(search=request.args.get('q'))
    return api_response(data=[template_to_dict(t, current_user) for t in templates])

@templates_bp.route('/shared/<token>', methods=['GET'])
def shared_link(token):
    """Public Endpoint: resolve a share link. Normal view rules still apply."""
    template = TemplateService.get_by_share_token(current_user, token)
    return api_response(data=template_to_dict(template, current_user))

# ==========================================
# CRUD
# ==========================================

@templates_bp.route('', methods=['POST'])
@login_required
def create_template():
    template = TemplateService.create_template(current_user, json_body())
    return api_response(data=template_to_dict(template, current_user), status=201)

@templates_bp.route('/<template_id>', methods=['GET'])
def get_template(template_id):
    template = TemplateService.get_template(current_user, template_id)
    return api_response(data=template_to_dict(template, current_user))

@templates_bp.route('/<template_id>', methods=['PUT', 'PATCH'])
@login_required
def update_template(template_id):
    template = TemplateService.update_template(current_user, template_id, json_body())
    return api_response(data=template_to_dict(template, current_user))

@templates_bp.route('/<template_id>', methods=['DELETE'])
@login_required
def delete_template(template_id):
    TemplateService.delete_template(current_user, template_id)
    return api_response(data={'message': 'Template deleted'})

# ==========================================
# STATE TRANSITIONS
# ==========================================

@templates_bp.route('/<template_id>/publish', methods=['POST'])
@login_required
def publish_template(template_id):
    template = TemplateService.publish(current_user, template_id)
    return api_response(data=template_to_dict(template, current_user))

@templates_bp.route('/<template_id>/unpublish', methods=['POST'])
@login_required
def unpublish_template(template_id):
    template = TemplateService.unpublish(current_user, template_id)
    return api_response(data=template_to_dict(template, current_user))

@templates_bp.route('/<template_id>/archive', methods=['POST'])
@login_required
def archive_template(template_id):
    template = TemplateService.archive(current_user, template_id)
    return api_response(data=template_to_dict(template, current_user))

# ==========================================
# SHARING
# ==========================================

def _grantee_from(data):
    return data.get('email') or data.get('user_id')

@templates_bp.route('/<template_id>/share', methods=['POST'])
@login_required
def share_template(template_id):
    """
    Body: { email | user_id, level: view|respond|edit }
    "accessType" is accepted as an alias of "level".
    """
    data = json_body()
    level = data.get('level') or data.get('accessType') or 'respond'
    share = TemplateService.share_template(current_user, template_id, _grantee_from(data), level)
    return api_response(data=share_to_dict(share))

@templates_bp.route('/<template_id>/share', methods=['DELETE'])
@login_required
def revoke_share(template_id):
    data = json_body()
    grantee = _grantee_from(data) or request.args.get('email') or request.args.get('user_id')
    TemplateService.revoke_share(current_user, template_id, grantee)
    return api_response(data={'message': 'Share revoked'})

@templates_bp.route('/<template_id>/link', methods=['POST'])
@login_required
def share_link(template_id):
    token = TemplateService.mint_share_link(current_user, template_id)
    return api_response(data={'token': token, 'url': TemplateService.share_url(token)})

# ==========================================
# RESPONSES
# ==========================================

@templates_bp.route('/<template_id>/responses', methods=['POST'])
def submit_response(template_id):
    """
    Public Endpoint when the template is public.
    Body: { answers: {question_id: value} }  ("data" accepted for older clients)
    """
    data = json_body()
    answers = data['answers'] if 'answers' in data else data.get('data')
    response = TemplateService.submit_response(current_user, template_id, answers)
    return api_response(data=response_to_dict(response), status=201)

@templates_bp.route('/<template_id>/responses', methods=['GET'])
@login_required
def list_responses(template_id):
    responses = TemplateService.list_responses(current_user, template_id)
    return api_response(data=[response_to_dict(r) for r in responses])
