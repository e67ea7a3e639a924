"""
Payload normalization and serialization at the API boundary.

Clients in the wild send several shapes for the same data (``fields`` or
``questions``, answers as a map or as a list of ``{question, value}``,
options as strings or ``{label, value}`` objects). Everything is folded into
one shape here so the services only ever see that shape.
"""
import re
import uuid

from bforms.errors import ValidationError
from bforms.models import QUESTION_TYPES, CHOICE_TYPES


# ---------------------------------------------------------------------
# Templates & questions
# ---------------------------------------------------------------------

def _normalize_options(raw):
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError('Question options must be a list')

    options = []
    for opt in raw:
        if isinstance(opt, dict):
            opt = opt.get('value') or opt.get('label')
        if opt is None:
            continue
        opt = str(opt).strip()
        if opt:
            options.append(opt)
    return options


def _normalize_validation(raw):
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise ValidationError('Question validation must be an object')

    rules = {}
    for key in ('min', 'max'):
        if raw.get(key) is not None:
            if isinstance(raw[key], bool) or not isinstance(raw[key], (int, float)):
                raise ValidationError(f'Validation {key} must be a number')
            rules[key] = raw[key]

    if 'min' in rules and 'max' in rules and rules['min'] > rules['max']:
        raise ValidationError('Validation min cannot exceed max')

    if raw.get('pattern'):
        try:
            re.compile(raw['pattern'])
        except (re.error, TypeError):
            raise ValidationError('Validation pattern is not a valid regular expression')
        rules['pattern'] = raw['pattern']

    if raw.get('message'):
        rules['message'] = str(raw['message'])

    return rules or None


def normalize_question(raw):
    if not isinstance(raw, dict):
        raise ValidationError('Each question must be an object')

    q_type = raw.get('type')
    if q_type not in QUESTION_TYPES:
        raise ValidationError(f"Invalid question type: {q_type}")

    label = str(raw.get('label') or '').strip()
    if not label:
        raise ValidationError('Question label is required')

    options = _normalize_options(raw.get('options'))
    if q_type in CHOICE_TYPES and not options:
        raise ValidationError('Select, radio, and checkbox fields must have options')

    required = raw.get('required')
    if required is None:
        required = False
    elif not isinstance(required, bool):
        raise ValidationError('Question required must be true or false')

    question = {
        'id': str(raw.get('id') or raw.get('_id') or uuid.uuid4().hex),
        'type': q_type,
        'label': label,
        'required': required,
        'options': options,
    }

    if raw.get('placeholder'):
        question['placeholder'] = str(raw['placeholder'])

    validation = _normalize_validation(raw.get('validation'))
    if validation:
        question['validation'] = validation

    return question


def normalize_questions(raw):
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError('Questions must be an array')

    questions = [normalize_question(q) for q in raw]

    seen = set()
    for q in questions:
        if q['id'] in seen:
            raise ValidationError(f"Duplicate question id: {q['id']}")
        seen.add(q['id'])
    return questions


def normalize_template_payload(data, partial=False):
    """
    Returns the editable template fields present in ``data``.
    With ``partial=False`` the title is mandatory.
    """
    if not isinstance(data, dict):
        raise ValidationError('Template payload must be an object')

    clean = {}

    if 'title' in data or not partial:
        title = str(data.get('title') or '').strip()
        if not title:
            raise ValidationError('Title is required')
        clean['title'] = title

    if 'description' in data:
        clean['description'] = str(data.get('description') or '').strip()

    if 'tags' in data:
        tags = data.get('tags') or []
        if not isinstance(tags, list):
            raise ValidationError('Tags must be an array')
        clean['tags'] = [str(t).strip() for t in tags if str(t).strip()]

    # Older clients call them "fields"
    if 'questions' in data or 'fields' in data:
        raw = data['questions'] if 'questions' in data else data['fields']
        clean['questions'] = normalize_questions(raw)
    elif not partial:
        clean['questions'] = []

    return clean


# ---------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------

def normalize_answers(raw):
    """Accepts ``{question_id: value}`` or ``[{question, value}, ...]``."""
    if raw is None:
        raise ValidationError('Answers are required')

    if isinstance(raw, dict):
        return {str(k): v for k, v in raw.items()}

    if isinstance(raw, list):
        answers = {}
        for item in raw:
            if not isinstance(item, dict):
                raise ValidationError('Each answer must be an object')
            qid = item.get('question') or item.get('question_id')
            if not qid:
                raise ValidationError('Answer is missing its question id')
            answers[str(qid)] = item.get('value')
        return answers

    raise ValidationError('Answers must be an object')


def is_blank(value):
    # 0 and False are real answers
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


# ---------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------

def _iso(dt):
    return dt.isoformat() if dt else None


def user_to_dict(user, public=False):
    if user is None:
        return None
    data = {'id': user.id, 'name': user.name, 'email': user.email}
    if not public:
        data.update({
            'role': user.role,
            'is_blocked': user.is_blocked,
            'created_at': _iso(user.created_at),
            'last_login': _iso(user.last_login),
        })
    return data


def share_to_dict(share):
    return {
        'email': share.grantee_email,
        'user_id': share.grantee_user_id,
        'level': share.level,
        'pending': share.is_pending,
        'updated_at': _iso(share.updated_at),
    }


def template_to_dict(template, identity=None):
    data = {
        'id': template.id,
        'title': template.title,
        'description': template.description or '',
        'tags': template.tags or [],
        'questions': template.questions or [],
        'owner': user_to_dict(template.owner, public=True),
        'visibility': template.visibility,
        'is_archived': template.is_archived,
        'state': template.state,
        'created_at': _iso(template.created_at),
        'updated_at': _iso(template.updated_at),
    }
    # Grant list and link token are the owner's business only
    if identity is not None and getattr(identity, 'id', None) == template.owner_id:
        data['shares'] = [share_to_dict(s) for s in template.shares]
        data['share_token'] = template.share_token
    return data


def response_to_dict(response):
    return {
        'id': response.id,
        'template_id': response.template_id,
        'respondent': user_to_dict(response.respondent, public=True),
        'answers': response.answers or {},
        'created_at': _iso(response.created_at),
    }
