from flask import Blueprint, current_app
from flask_login import login_required, current_user

from bforms.models import get_now
from bforms.errors import Forbidden
from bforms.services.jira_service import JiraService
from bforms.services.salesforce_service import SalesforceService
from bforms.utils import api_response, commit, json_body

integrations_bp = Blueprint('integrations_bp', __name__, url_prefix='/api')

# ==========================================
# JIRA
# ==========================================

@integrations_bp.route('/jira/tickets', methods=['POST'])
@login_required
def create_jira_ticket():
    data = json_body()
    ticket = JiraService.create_ticket(
        summary=data.get('summary'),
        description=data.get('description'),
        priority=data.get('priority'),
        reporter=current_user.email,
        template_title=data.get('templateTitle'),
        page_url=data.get('pageUrl')
    )
    return api_response(data=ticket, status=201)

@integrations_bp.route('/jira/tickets/<email>', methods=['GET'])
@login_required
def user_jira_tickets(email):
    # Users only see their own tickets; admins can look anyone up
    if email.lower() != current_user.email and not current_user.is_admin:
        raise Forbidden()
    return api_response(data=JiraService.user_tickets(email))

# ==========================================
# SALESFORCE
# ==========================================

@integrations_bp.route('/salesforce/test-connection', methods=['GET'])
@login_required
def test_salesforce_connection():
    SalesforceService.from_app().login()
    return api_response(data={'message': 'Successfully connected to Salesforce'})

@integrations_bp.route('/salesforce/sync', methods=['POST'])
@login_required
def sync_salesforce():
    data = json_body()
    user_data = {
        'firstName': data.get('firstName'),
        'lastName': data.get('lastName'),
        'email': current_user.email,
        'phone': data.get('phone'),
        'title': data.get('title'),
        'description': data.get('description'),
    }
    service = SalesforceService.from_app()

    # Already linked: refresh the account instead of creating a duplicate
    if current_user.sf_account_id:
        service.update_account(current_user.sf_account_id, user_data)
        result = {'accountId': current_user.sf_account_id, 'contactId': current_user.sf_contact_id}
    else:
        result = service.create_account(user_data)
        current_user.sf_account_id = result['accountId']
        current_user.sf_contact_id = result['contactId']

    current_user.sf_synced_at = get_now()
    commit()

    current_app.logger.info(f"User {current_user.id} synced to Salesforce account {result['accountId']}")
    return api_response(data=result)

@integrations_bp.route('/salesforce/status', methods=['GET'])
@login_required
def salesforce_status():
    if not current_user.sf_account_id:
        return api_response(data={'synced': False})

    account = SalesforceService.from_app().get_account(current_user.sf_account_id)
    return api_response(data={
        'synced': True,
        'lastSync': current_user.sf_synced_at.isoformat() if current_user.sf_synced_at else None,
        'account': account
    })
