from datetime import datetime, timedelta

import pytest

from bforms.errors import Forbidden, NotFound, ValidationError, Conflict, Unauthenticated
from bforms.models import (
    db, User, Template, Response, TemplateShare,
    VISIBILITY_PRIVATE, VISIBILITY_PUBLIC
)
from bforms.services.template_service import TemplateService


def add_user(email, name='User'):
    user = User(name=name, email=email, password_hash='x')
    db.session.add(user)
    db.session.commit()
    return user


def survey_payload(**overrides):
    payload = {
        'title': 'Customer survey',
        'description': 'Quarterly',
        'questions': [
            {'id': 'q1', 'type': 'text', 'label': 'Name', 'required': True},
            {'id': 'q2', 'type': 'radio', 'label': 'Happy?', 'options': ['yes', 'no']},
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def owner(ctx):
    return add_user('owner@x.com', 'Owner')


@pytest.fixture
def template(owner):
    return TemplateService.create_template(owner, survey_payload())


class TestCreateTemplate:

    def test_new_template_is_draft(self, owner):
        template = TemplateService.create_template(owner, survey_payload())
        assert template.owner_id == owner.id
        assert template.visibility == VISIBILITY_PRIVATE
        assert template.is_archived is False
        assert template.state == 'draft'
        assert [q['id'] for q in template.questions] == ['q1', 'q2']

    def test_anonymous_cannot_create(self, ctx):
        with pytest.raises(Unauthenticated):
            TemplateService.create_template(None, survey_payload())

    def test_missing_title(self, owner):
        with pytest.raises(ValidationError, match='Title is required'):
            TemplateService.create_template(owner, survey_payload(title='  '))

    def test_choice_question_needs_options(self, owner):
        payload = survey_payload(questions=[{'type': 'select', 'label': 'Pick'}])
        with pytest.raises(ValidationError, match='must have options'):
            TemplateService.create_template(owner, payload)

        payload = survey_payload(questions=[{'type': 'select', 'label': 'Pick', 'options': ['a']}])
        template = TemplateService.create_template(owner, payload)
        assert template.questions[0]['options'] == ['a']

    def test_fields_alias_accepted(self, owner):
        payload = {'title': 'Legacy', 'fields': [{'type': 'email', 'label': 'Email'}]}
        template = TemplateService.create_template(owner, payload)
        assert template.questions[0]['type'] == 'email'
        assert template.questions[0]['id']


class TestGetAndUpdate:

    def test_malformed_id(self, owner):
        with pytest.raises(ValidationError, match='Invalid template ID'):
            TemplateService.get_template(owner, 'not-a-uuid')

    def test_unknown_id(self, owner):
        with pytest.raises(NotFound):
            TemplateService.get_template(owner, '00000000-0000-0000-0000-000000000000')

    def test_stranger_cannot_view_draft(self, template):
        stranger = add_user('stranger@x.com')
        with pytest.raises(Forbidden):
            TemplateService.get_template(stranger, template.id)

    def test_owner_partial_update_keeps_other_fields(self, owner, template):
        updated = TemplateService.update_template(owner, template.id, {'title': 'Renamed'})
        assert updated.title == 'Renamed'
        assert updated.description == 'Quarterly'
        assert len(updated.questions) == 2

    def test_update_revalidates_questions(self, owner, template):
        with pytest.raises(ValidationError):
            TemplateService.update_template(owner, template.id, {'questions': [{'type': 'checkbox', 'label': 'x'}]})

    def test_update_ignores_ownership_and_visibility_fields(self, owner, template):
        intruder = add_user('intruder@x.com')
        TemplateService.update_template(owner, template.id, {
            'owner_id': intruder.id, 'visibility': VISIBILITY_PUBLIC
        })
        assert template.owner_id == owner.id
        assert template.visibility == VISIBILITY_PRIVATE


class TestLifecycle:

    def test_publish_unpublish(self, owner, template):
        TemplateService.publish(owner, template.id)
        assert template.state == 'published'
        TemplateService.unpublish(owner, template.id)
        assert template.state == 'draft'

    def test_archive_forces_private(self, owner, template):
        TemplateService.publish(owner, template.id)
        TemplateService.archive(owner, template.id)
        assert template.is_archived is True
        assert template.visibility == VISIBILITY_PRIVATE

    def test_delete_is_soft_and_keeps_responses(self, owner, template):
        TemplateService.submit_response(owner, template.id, {'q1': 'Ann'})
        TemplateService.delete_template(owner, template.id)

        assert db.session.get(type(template), template.id) is not None
        assert template.state == 'archived'
        assert len(TemplateService.list_responses(owner, template.id)) == 1

    def test_archived_cannot_be_published(self, owner, template):
        TemplateService.archive(owner, template.id)
        with pytest.raises(Conflict):
            TemplateService.publish(owner, template.id)
        assert template.visibility == VISIBILITY_PRIVATE

    def test_only_owner_publishes(self, template):
        editor = add_user('editor@x.com')
        template_id = template.id
        TemplateService.share_template(template.owner, template_id, editor.email, 'edit')
        with pytest.raises(Forbidden):
            TemplateService.publish(editor, template_id)

    def test_only_owner_deletes(self, template):
        editor = add_user('editor@x.com')
        TemplateService.share_template(template.owner, template.id, editor.email, 'edit')
        with pytest.raises(Forbidden):
            TemplateService.delete_template(editor, template.id)
        assert template.is_archived is False


class TestSharing:

    def test_reshare_replaces_level(self, owner, template):
        TemplateService.share_template(owner, template.id, 'b@x.com', 'view')
        TemplateService.share_template(owner, template.id, 'B@x.com', 'edit')

        shares = TemplateShare.query.filter_by(template_id=template.id).all()
        assert len(shares) == 1
        assert shares[0].level == 'edit'

    def test_concurrent_first_share_becomes_update(self, owner, template, monkeypatch):
        TemplateService.share_template(owner, template.id, 'b@x.com', 'view')

        # First lookup misses the row, as a request racing the first insert would
        real_share_for = Template.share_for
        misses = []

        def stale_share_for(self, email):
            if not misses:
                misses.append(email)
                return None
            return real_share_for(self, email)

        monkeypatch.setattr(Template, 'share_for', stale_share_for)
        share = TemplateService.share_template(owner, template.id, 'b@x.com', 'edit')

        assert misses == ['b@x.com']
        assert share.level == 'edit'
        shares = TemplateShare.query.filter_by(template_id=template.id).all()
        assert [(s.grantee_email, s.level) for s in shares] == [('b@x.com', 'edit')]

    def test_share_with_unregistered_email_is_pending(self, owner, template):
        share = TemplateService.share_template(owner, template.id, 'later@x.com', 'respond')
        assert share.is_pending

    def test_share_with_registered_email_binds_identity(self, owner, template):
        bob = add_user('b@x.com')
        share = TemplateService.share_template(owner, template.id, 'b@x.com', 'respond')
        assert share.grantee_user_id == bob.id

    def test_share_by_user_id(self, owner, template):
        bob = add_user('b@x.com')
        share = TemplateService.share_template(owner, template.id, bob.id, 'view')
        assert share.grantee_email == 'b@x.com'

    def test_share_unknown_user_id(self, owner, template):
        with pytest.raises(NotFound):
            TemplateService.share_template(owner, template.id, '00000000-0000-0000-0000-000000000000', 'view')

    def test_invalid_level(self, owner, template):
        with pytest.raises(ValidationError):
            TemplateService.share_template(owner, template.id, 'b@x.com', 'admin')

    def test_cannot_share_with_self(self, owner, template):
        with pytest.raises(ValidationError):
            TemplateService.share_template(owner, template.id, owner.email, 'edit')

    def test_sharee_cannot_reshare(self, owner, template):
        bob = add_user('b@x.com')
        TemplateService.share_template(owner, template.id, 'b@x.com', 'edit')
        with pytest.raises(Forbidden):
            TemplateService.share_template(bob, template.id, 'carol@x.com', 'edit')

    def test_pending_share_claimed_on_registration(self, owner, template):
        TemplateService.share_template(owner, template.id, 'Later@x.com', 'respond')
        later = add_user('later@x.com')

        assert TemplateService.claim_pending_shares(later) == 1
        db.session.commit()

        share = template.share_for('later@x.com')
        assert share.grantee_user_id == later.id
        assert TemplateService.get_template(later, template.id) is template

    def test_revoke_share(self, owner, template):
        bob = add_user('b@x.com')
        TemplateService.share_template(owner, template.id, 'b@x.com', 'view')
        TemplateService.revoke_share(owner, template.id, 'b@x.com')

        with pytest.raises(Forbidden):
            TemplateService.get_template(bob, template.id)
        with pytest.raises(NotFound):
            TemplateService.revoke_share(owner, template.id, 'b@x.com')

    def test_public_search_matches_tags(self, owner):
        tagged = TemplateService.create_template(owner, survey_payload(title='Intake', tags=['onboarding', 'hr']))
        TemplateService.create_template(owner, survey_payload(title='Exit interview'))
        for t in Template.query.all():
            TemplateService.publish(owner, t.id)

        assert TemplateService.list_public('Onboarding') == [tagged]
        assert len(TemplateService.list_public()) == 2

    def test_shared_with_listing(self, owner, template):
        bob = add_user('b@x.com')
        TemplateService.share_template(owner, template.id, 'b@x.com', 'view')
        assert TemplateService.list_shared_with(bob) == [template]

        TemplateService.archive(owner, template.id)
        assert TemplateService.list_shared_with(bob) == []


class TestShareLinks:

    def test_link_is_stable_once_minted(self, owner, template):
        first = TemplateService.mint_share_link(owner, template.id)
        second = TemplateService.mint_share_link(owner, template.id)
        assert first == second
        assert TemplateService.share_url(first) == f"http://forms.test/templates/shared/{first}"

    def test_link_does_not_grant_access(self, owner, template):
        token = TemplateService.mint_share_link(owner, template.id)
        with pytest.raises(Forbidden):
            TemplateService.get_by_share_token(None, token)

        TemplateService.publish(owner, template.id)
        assert TemplateService.get_by_share_token(None, token) is template

    def test_unknown_link(self, ctx):
        with pytest.raises(NotFound):
            TemplateService.get_by_share_token(None, 'nope')

    def test_collision_retries_then_conflicts(self, owner, template, monkeypatch):
        other = TemplateService.create_template(owner, survey_payload(title='Other'))
        taken = TemplateService.mint_share_link(owner, other.id)

        monkeypatch.setattr('bforms.services.template_service.secrets.token_urlsafe', lambda n: taken)
        with pytest.raises(Conflict):
            TemplateService.mint_share_link(owner, template.id)
        assert template.share_token is None


class TestResponses:

    def test_required_answer_missing(self, owner, template):
        with pytest.raises(ValidationError, match='Name'):
            TemplateService.submit_response(owner, template.id, {'q2': 'yes'})
        with pytest.raises(ValidationError):
            TemplateService.submit_response(owner, template.id, {'q1': '   '})

    def test_unknown_question(self, owner, template):
        with pytest.raises(ValidationError, match='Unknown question id'):
            TemplateService.submit_response(owner, template.id, {'q1': 'Ann', 'zzz': 1})

    def test_answers_as_list(self, owner, template):
        response = TemplateService.submit_response(owner, template.id, [{'question': 'q1', 'value': 'Ann'}])
        assert response.answers == {'q1': 'Ann'}
        assert response.respondent_id == owner.id

    def test_list_newest_first(self, owner, template):
        base = datetime(2024, 1, 1)
        for i in range(3):
            db.session.add(Response(template_id=template.id, answers={'q1': str(i)},
                                    created_at=base + timedelta(minutes=i)))
        db.session.commit()

        responses = TemplateService.list_responses(owner, template.id)
        assert [r.answers['q1'] for r in responses] == ['2', '1', '0']

    def test_equal_timestamps_keep_insertion_order(self, owner, template):
        for i in range(8):
            TemplateService.submit_response(owner, template.id, {'q1': str(i)})
        Response.query.update({Response.created_at: datetime(2024, 1, 1)})
        db.session.commit()

        expected = [str(i) for i in reversed(range(8))]
        assert [r.answers['q1'] for r in TemplateService.list_responses(owner, template.id)] == expected
        assert [r.answers['q1'] for r in TemplateService.list_my_responses(owner)] == expected

    def test_sharee_cannot_list_responses(self, owner, template):
        bob = add_user('b@x.com')
        TemplateService.share_template(owner, template.id, 'b@x.com', 'edit')
        with pytest.raises(Forbidden):
            TemplateService.list_responses(bob, template.id)


class TestScenarios:

    def test_publish_then_archive_controls_anonymous_responses(self, owner, template):
        TemplateService.share_template(owner, template.id, 'b@x.com', 'respond')

        with pytest.raises(Forbidden):
            TemplateService.submit_response(None, template.id, {'q1': 'anon'})

        TemplateService.publish(owner, template.id)
        response = TemplateService.submit_response(None, template.id, {'q1': 'anon'})
        assert response.respondent_id is None

        TemplateService.archive(owner, template.id)
        assert template.visibility == VISIBILITY_PRIVATE

        with pytest.raises(Forbidden):
            TemplateService.submit_response(None, template.id, {'q1': 'anon'})

    def test_view_share_upgraded_to_edit(self, owner, template):
        bob = add_user('b@x.com')
        TemplateService.share_template(owner, template.id, 'b@x.com', 'view')

        with pytest.raises(Forbidden):
            TemplateService.update_template(bob, template.id, {'title': 'Bob was here'})

        TemplateService.share_template(owner, template.id, 'b@x.com', 'edit')
        updated = TemplateService.update_template(bob, template.id, {'title': 'Bob was here'})
        assert updated.title == 'Bob was here'
