from flask import Blueprint
from flask_login import login_required, current_user

from bforms.errors import ValidationError
from bforms.services.template_service import TemplateService
from bforms.schemas import response_to_dict
from bforms.utils import api_response, json_body

responses_bp = Blueprint('responses', __name__, url_prefix='/api/responses')

@responses_bp.route('/mine', methods=['GET'])
@login_required
def my_responses():
    responses = TemplateService.list_my_responses(current_user)
    return api_response(data=[response_to_dict(r) for r in responses])

@responses_bp.route('', methods=['POST'])
def create_response():
    """
    Older clients post here instead of /api/templates/<id>/responses.
    Body: { templateId, data | answers }
    """
    data = json_body()
    template_id = data.get('templateId') or data.get('template_id')
    if not template_id:
        raise ValidationError('templateId is required')

    answers = data['answers'] if 'answers' in data else data.get('data')
    response = TemplateService.submit_response(current_user, template_id, answers)
    return api_response(data=response_to_dict(response), status=201)
