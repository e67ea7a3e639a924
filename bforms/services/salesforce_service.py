import requests
from flask import current_app

from bforms.errors import UpstreamUnavailable, ValidationError
from bforms.utils import retry_request


class SalesforceService:
    """
    CRM client over the Salesforce REST API.

    Authenticates with the OAuth2 username-password flow and keeps the
    session (access token + instance URL) on the instance.
    """
    TIMEOUT = 20

    def __init__(self, config):
        self.login_url = (config.get('SF_LOGIN_URL') or 'https://login.salesforce.com').rstrip('/')
        self.client_id = config.get('SF_CLIENT_ID')
        self.client_secret = config.get('SF_CLIENT_SECRET')
        self.username = config.get('SF_USERNAME')
        self.password = config.get('SF_PASSWORD') or ''
        self.security_token = config.get('SF_SECURITY_TOKEN') or ''
        self.api_version = config.get('SF_API_VERSION') or '59.0'
        self.access_token = None
        self.instance_url = None

    @classmethod
    def from_app(cls):
        service = cls(current_app.config)
        # Presence flags only, never the secrets themselves
        current_app.logger.debug(
            f"Salesforce config: login_url={service.login_url} username={service.username} "
            f"has_password={bool(service.password)} has_token={bool(service.security_token)} "
            f"has_client_id={bool(service.client_id)} has_client_secret={bool(service.client_secret)}"
        )
        return service

    @property
    def is_configured(self):
        return all([self.client_id, self.client_secret, self.username, self.password])

    def _headers(self):
        return {
            'Authorization': f"Bearer {self.access_token}",
            'Content-Type': 'application/json',
        }

    def _sobject_url(self, sobject, record_id=None):
        url = f"{self.instance_url}/services/data/v{self.api_version}/sobjects/{sobject}/"
        if record_id:
            url += record_id
        return url

    @retry_request()
    def _request(self, method, url, **kwargs):
        response = requests.request(method, url, timeout=self.TIMEOUT, **kwargs)
        response.raise_for_status()
        return response.json() if response.content else {}

    def login(self):
        if not self.is_configured:
            raise UpstreamUnavailable('Salesforce integration is not configured')

        try:
            data = self._request('POST', f"{self.login_url}/services/oauth2/token", data={
                'grant_type': 'password',
                'client_id': self.client_id,
                'client_secret': self.client_secret,
                'username': self.username,
                'password': self.password + self.security_token,
            })
        except requests.exceptions.RequestException as e:
            current_app.logger.error(f"Error connecting to Salesforce: {e}")
            raise UpstreamUnavailable('Could not connect to Salesforce')

        self.access_token = data.get('access_token')
        self.instance_url = (data.get('instance_url') or '').rstrip('/')
        current_app.logger.info("Connected to Salesforce")
        return self

    def _ensure_session(self):
        if not self.access_token:
            self.login()

    def _create(self, sobject, fields):
        self._ensure_session()
        data = self._request('POST', self._sobject_url(sobject), json=fields, headers=self._headers())
        return data.get('id')

    def create_account(self, user_data):
        """Creates an Account and its primary Contact. Returns both ids."""
        first_name = (user_data.get('firstName') or '').strip()
        last_name = (user_data.get('lastName') or '').strip()
        if not last_name:
            raise ValidationError('Last name is required')

        try:
            account_id = self._create('Account', {
                'Name': f"{first_name} {last_name}".strip(),
                'Type': 'Customer',
                'Industry': 'Technology',
                'Description': 'B-Forms User',
            })
            contact_id = self._create('Contact', {
                'AccountId': account_id,
                'FirstName': first_name,
                'LastName': last_name,
                'Email': user_data.get('email'),
                'Phone': user_data.get('phone'),
                'Title': user_data.get('title') or 'B-Forms User',
                'Description': user_data.get('description') or 'Created from B-Forms platform',
            })
        except requests.exceptions.RequestException as e:
            current_app.logger.error(f"Error creating Salesforce records: {e}")
            raise UpstreamUnavailable('Failed to create Salesforce records')

        return {'accountId': account_id, 'contactId': contact_id}

    def update_account(self, account_id, user_data):
        self._ensure_session()
        fields = {}
        name = f"{user_data.get('firstName') or ''} {user_data.get('lastName') or ''}".strip()
        if name:
            fields['Name'] = name
        if user_data.get('description') is not None:
            fields['Description'] = user_data['description']

        try:
            self._request('PATCH', self._sobject_url('Account', account_id), json=fields, headers=self._headers())
        except requests.exceptions.RequestException as e:
            current_app.logger.error(f"Error updating Salesforce account: {e}")
            raise UpstreamUnavailable('Failed to update Salesforce account')

    def get_account(self, account_id):
        self._ensure_session()
        try:
            return self._request('GET', self._sobject_url('Account', account_id), headers=self._headers())
        except requests.exceptions.RequestException as e:
            current_app.logger.error(f"Error getting Salesforce account: {e}")
            raise UpstreamUnavailable('Failed to fetch Salesforce account')
