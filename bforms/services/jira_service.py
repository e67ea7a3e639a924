import requests
from flask import current_app

from bforms.errors import UpstreamUnavailable, ValidationError
from bforms.utils import retry_request


class JiraService:
    """Issue tracker client (Jira Cloud REST API v2, basic auth with an API token)."""
    TIMEOUT = 15
    PRIORITIES = ('Highest', 'High', 'Medium', 'Low', 'Lowest')
    SEARCH_FIELDS = 'summary,status,priority,created,updated'

    @staticmethod
    def get_config():
        config = current_app.config
        domain = (config.get('JIRA_DOMAIN') or '').rstrip('/')
        if not domain or not config.get('JIRA_EMAIL') or not config.get('JIRA_API_TOKEN'):
            raise UpstreamUnavailable('Jira integration is not configured')
        return {
            'domain': domain,
            'auth': (config['JIRA_EMAIL'], config['JIRA_API_TOKEN']),
            'project_key': config.get('JIRA_PROJECT_KEY'),
        }

    @staticmethod
    def build_description(description, reporter, template_title=None, page_url=None):
        return (
            f"{description}\n\n"
            f"Additional Information:\n"
            f"- Template: {template_title or 'N/A'}\n"
            f"- Page URL: {page_url or 'N/A'}\n"
            f"- Reporter Email: {reporter}\n"
        )

    @staticmethod
    @retry_request()
    def _post(url, payload, auth):
        response = requests.post(url, json=payload, auth=auth, timeout=JiraService.TIMEOUT)
        response.raise_for_status()
        return response.json()

    @staticmethod
    @retry_request()
    def _get(url, params, auth):
        response = requests.get(url, params=params, auth=auth, timeout=JiraService.TIMEOUT)
        response.raise_for_status()
        return response.json()

    @staticmethod
    def create_ticket(summary, description, priority, reporter, template_title=None, page_url=None):
        summary = (summary or '').strip()
        if not summary:
            raise ValidationError('Summary is required')
        priority = priority or 'Medium'
        if priority not in JiraService.PRIORITIES:
            raise ValidationError(f"Invalid priority: {priority}")

        config = JiraService.get_config()
        payload = {
            'fields': {
                'project': {'key': config['project_key']},
                'summary': summary,
                'description': JiraService.build_description(description or '', reporter, template_title, page_url),
                'issuetype': {'name': 'Task'},
                'priority': {'name': priority},
            }
        }

        try:
            data = JiraService._post(f"{config['domain']}/rest/api/2/issue", payload, config['auth'])
        except requests.exceptions.RequestException as e:
            current_app.logger.error(f"Jira create ticket error: {e}")
            raise UpstreamUnavailable('Failed to create Jira ticket')

        current_app.logger.info(f"Jira ticket created: {data.get('key')} reporter={reporter}")
        return data

    @staticmethod
    def user_tickets(email, max_results=50):
        config = JiraService.get_config()
        # Quotes would break out of the JQL string literal
        email = (email or '').replace('"', '').strip()
        params = {
            'jql': f'reporter = "{email}" ORDER BY created DESC',
            'maxResults': max_results,
            'fields': JiraService.SEARCH_FIELDS,
        }

        try:
            return JiraService._get(f"{config['domain']}/rest/api/3/search/jql", params, config['auth'])
        except requests.exceptions.RequestException as e:
            current_app.logger.error(f"Jira search error: {e}")
            raise UpstreamUnavailable('Failed to fetch Jira tickets')
