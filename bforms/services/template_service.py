from flask import current_app
from sqlalchemy import or_, cast
import secrets

from bforms.models import (
    db, User, Template, TemplateShare, Response,
    VISIBILITY_PRIVATE, VISIBILITY_PUBLIC, SHARE_LEVELS
)
from bforms.errors import Unauthenticated, NotFound, ValidationError, Conflict
from bforms.schemas import normalize_template_payload, normalize_answers, is_blank
from bforms.services.access_service import AccessService, Action, as_identity
from bforms.utils import commit, parse_id


class TemplateService:
    """
    Template lifecycle (draft -> published -> archived), sharing and
    response collection. Every read or mutation is authorized first.
    """
    SHARE_TOKEN_ATTEMPTS = 5

    @staticmethod
    def _require_identity(identity):
        identity = as_identity(identity)
        if identity is None:
            raise Unauthenticated()
        return identity

    @staticmethod
    def get_or_404(template_id):
        template = db.session.get(Template, parse_id(template_id, 'template ID'))
        if not template:
            raise NotFound('Template not found')
        return template

    # ==========================================
    # CRUD
    # ==========================================

    @staticmethod
    def create_template(identity, data):
        identity = TemplateService._require_identity(identity)
        clean = normalize_template_payload(data)

        template = Template(
            owner_id=identity.id,
            visibility=VISIBILITY_PRIVATE,
            is_archived=False,
            **clean
        )
        db.session.add(template)
        commit()

        current_app.logger.info(f"Template created: {template.id} by {identity.id}")
        return template

    @staticmethod
    def get_template(identity, template_id):
        template = TemplateService.get_or_404(template_id)
        AccessService.require(template, identity, Action.VIEW)
        return template

    @staticmethod
    def update_template(identity, template_id, patch):
        template = TemplateService.get_or_404(template_id)
        AccessService.require(template, identity, Action.EDIT)

        clean = normalize_template_payload(patch, partial=True)
        for field, value in clean.items():
            setattr(template, field, value)
        commit()

        current_app.logger.info(f"Template updated: {template.id} fields={sorted(clean)}")
        return template

    @staticmethod
    def delete_template(identity, template_id):
        """Soft delete: the template is archived so its responses stay auditable."""
        template = TemplateService.get_or_404(template_id)
        AccessService.require(template, identity, Action.DELETE)
        return TemplateService._archive(template)

    # ==========================================
    # STATE TRANSITIONS
    # ==========================================

    @staticmethod
    def _archive(template):
        # Archiving revokes public access in the same write
        template.is_archived = True
        template.visibility = VISIBILITY_PRIVATE
        commit()
        current_app.logger.info(f"Template archived: {template.id}")
        return template

    @staticmethod
    def archive(identity, template_id):
        return TemplateService.delete_template(identity, template_id)

    @staticmethod
    def publish(identity, template_id):
        template = TemplateService.get_or_404(template_id)
        AccessService.require(template, identity, Action.SHARE)

        if template.is_archived:
            raise Conflict('Archived templates cannot be published')

        template.visibility = VISIBILITY_PUBLIC
        commit()
        current_app.logger.info(f"Template published: {template.id}")
        return template

    @staticmethod
    def unpublish(identity, template_id):
        template = TemplateService.get_or_404(template_id)
        AccessService.require(template, identity, Action.SHARE)

        template.visibility = VISIBILITY_PRIVATE
        commit()
        current_app.logger.info(f"Template unpublished: {template.id}")
        return template

    # ==========================================
    # SHARING
    # ==========================================

    @staticmethod
    def resolve_grantee(grantee):
        """
        Returns (email, user) for an email address or a user id.
        The user is None when the email is not registered yet.
        """
        grantee = str(grantee or '').strip()
        if not grantee:
            raise ValidationError('Grantee email or user id is required')

        if '@' in grantee:
            email = grantee.lower()
            return email, User.query.filter_by(email=email).first()

        user = db.session.get(User, parse_id(grantee, 'user id'))
        if not user:
            raise NotFound('User not found')
        return user.email, user

    @staticmethod
    def _upsert_share(template, email, user, level):
        share = template.share_for(email)
        if share:
            share.level = level
        else:
            share = TemplateShare(grantee_email=email, level=level)
            template.shares.append(share)

        if user is not None:
            share.grantee_user_id = user.id
        return share

    @staticmethod
    def share_template(identity, template_id, grantee, level):
        template = TemplateService.get_or_404(template_id)
        AccessService.require(template, identity, Action.SHARE)

        if level not in SHARE_LEVELS:
            raise ValidationError(f"Invalid access level: {level}")

        email, user = TemplateService.resolve_grantee(grantee)
        if user is not None and user.id == template.owner_id:
            raise ValidationError('Cannot share a template with its owner')

        share = TemplateService._upsert_share(template, email, user, level)
        try:
            commit()
        except Conflict:
            # A concurrent request inserted the same grantee first; update its row
            current_app.logger.warning(f"Share for {email} on template {template.id} created concurrently, retrying")
            share = TemplateService._upsert_share(template, email, user, level)
            commit()

        current_app.logger.info(
            f"Template {template.id} shared with {email} level={level} pending={share.is_pending}"
        )
        return share

    @staticmethod
    def revoke_share(identity, template_id, grantee):
        template = TemplateService.get_or_404(template_id)
        AccessService.require(template, identity, Action.SHARE)

        email, _ = TemplateService.resolve_grantee(grantee)
        share = template.share_for(email)
        if not share:
            raise NotFound('Share not found')

        template.shares.remove(share)
        commit()
        current_app.logger.info(f"Share revoked on template {template.id} for {email}")

    @staticmethod
    def claim_pending_shares(user):
        """
        Binds grants made to ``user.email`` before registration to the new
        user. The caller owns the transaction.
        """
        pending = TemplateShare.query.filter_by(grantee_email=user.email.lower(), grantee_user_id=None).all()
        for share in pending:
            share.grantee_user_id = user.id
        return len(pending)

    # ==========================================
    # SHARE LINKS
    # ==========================================

    @staticmethod
    def share_url(token):
        base = (current_app.config.get('CLIENT_URL') or '').rstrip('/')
        return f"{base}/templates/shared/{token}"

    @staticmethod
    def mint_share_link(identity, template_id):
        template = TemplateService.get_or_404(template_id)
        AccessService.require(template, identity, Action.SHARE)

        if template.share_token:
            return template.share_token

        for _ in range(TemplateService.SHARE_TOKEN_ATTEMPTS):
            token = secrets.token_urlsafe(24)
            if Template.query.filter_by(share_token=token).first():
                current_app.logger.warning("Share token collision, minting a new one")
                continue

            template.share_token = token
            try:
                commit()
            except Conflict:
                current_app.logger.warning("Share token taken concurrently, minting a new one")
                continue
            current_app.logger.info(f"Share link minted for template {template.id}")
            return token

        raise Conflict('Could not generate a unique share link')

    @staticmethod
    def get_by_share_token(identity, token):
        template = Template.query.filter_by(share_token=token).first() if token else None
        if not template:
            raise NotFound('Template not found')
        # A link locates the template; it grants nothing by itself
        AccessService.require(template, identity, Action.VIEW)
        return template

    # ==========================================
    # LISTINGS
    # ==========================================

    @staticmethod
    def list_owned(identity):
        identity = TemplateService._require_identity(identity)
        return Template.query.filter_by(owner_id=identity.id, is_archived=False)\
                             .order_by(Template.created_at.desc()).all()

    @staticmethod
    def list_public(search=None):
        query = Template.query.filter_by(visibility=VISIBILITY_PUBLIC, is_archived=False)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                Template.title.ilike(pattern),
                Template.description.ilike(pattern),
                cast(Template.tags, db.String).ilike(pattern)
            ))
        return query.order_by(Template.created_at.desc()).all()

    @staticmethod
    def list_shared_with(identity):
        identity = TemplateService._require_identity(identity)
        return Template.query.join(TemplateShare)\
                             .filter(or_(TemplateShare.grantee_user_id == identity.id,
                                         TemplateShare.grantee_email == identity.email.lower()))\
                             .filter(Template.is_archived.is_(False))\
                             .order_by(Template.created_at.desc()).all()

    # ==========================================
    # RESPONSES
    # ==========================================

    @staticmethod
    def submit_response(identity, template_id, answers):
        template = TemplateService.get_or_404(template_id)
        AccessService.require(template, identity, Action.RESPOND)

        answers = normalize_answers(answers)
        questions = template.questions or []

        known_ids = {q['id'] for q in questions}
        unknown = [qid for qid in answers if qid not in known_ids]
        if unknown:
            raise ValidationError(f"Unknown question id: {', '.join(unknown)}")

        missing = [q['label'] for q in questions if q.get('required') and is_blank(answers.get(q['id']))]
        if missing:
            raise ValidationError(f"Answer required for: {', '.join(missing)}")

        identity = as_identity(identity)
        response = Response(
            template_id=template.id,
            respondent_id=identity.id if identity else None,
            answers=answers
        )
        db.session.add(response)
        commit()

        current_app.logger.info(f"Response {response.id} submitted to template {template.id}")
        return response

    @staticmethod
    def list_responses(identity, template_id):
        template = TemplateService.get_or_404(template_id)
        AccessService.require(template, identity, Action.VIEW_RESPONSES)
        return Response.query.filter_by(template_id=template.id)\
                             .order_by(Response.created_at.desc(), Response.seq.desc()).all()

    @staticmethod
    def list_my_responses(identity):
        identity = TemplateService._require_identity(identity)
        return Response.query.filter_by(respondent_id=identity.id)\
                             .order_by(Response.created_at.desc(), Response.seq.desc()).all()
