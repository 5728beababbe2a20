from datetime import timedelta

import pytest

from deploy import deploy
from extensions import db, mail
from models import AuditLog, Donation, User, utcnow
from seed import ADMIN_EMAIL, seed_admin


# ==========================================
#  USER MODERATION
# ==========================================
def test_admin_lists_users(client, admin, donor, recipient, headers_for):
    body = client.get('/api/admin/users?role=recipient', headers=headers_for(admin)).get_json()

    assert body['total_count'] == 1
    assert body['items'][0]['id'] == recipient.id
    assert body['items'][0]['email'] == recipient.email


def test_admin_routes_reject_non_admins(client, donor, headers_for):
    for url in ('/api/admin/users', '/api/admin/logs', '/api/admin/donations',
                f'/api/admin/users/{donor.id}'):
        assert client.get(url, headers=headers_for(donor)).status_code == 403


def test_deactivate_user(client, admin, recipient, headers_for):
    resp = client.patch(f'/api/admin/users/{recipient.id}/status', json={'is_active': False},
                        headers=headers_for(admin))

    assert resp.status_code == 200
    assert resp.get_json()['user']['is_active'] is False
    assert AuditLog.query.filter_by(action="USER_STATUS", user_id=admin.id).count() == 1


def test_deactivated_recipient_cannot_claim(client, admin, recipient, donation_factory, headers_for):
    item = donation_factory()
    client.patch(f'/api/admin/users/{recipient.id}/status', json={'is_active': False},
                 headers=headers_for(admin))

    resp = client.post(f'/api/donations/{item.id}/claim', headers=headers_for(recipient))
    assert resp.status_code == 403


@pytest.mark.parametrize("body", [{}, {'is_active': 'no'}])
def test_user_status_requires_boolean(client, admin, recipient, headers_for, body):
    resp = client.patch(f'/api/admin/users/{recipient.id}/status', json=body, headers=headers_for(admin))
    assert resp.status_code == 400


def test_user_status_unknown_user(client, admin, headers_for):
    resp = client.patch('/api/admin/users/999/status', json={'is_active': False}, headers=headers_for(admin))
    assert resp.status_code == 404


# ==========================================
#  OVERRIDES & AUDIT TRAIL
# ==========================================
def test_admin_can_delete_any_donation(client, admin, donation_factory, headers_for):
    item = donation_factory()
    item_id = item.id

    resp = client.delete(f'/api/donations/{item_id}', headers=headers_for(admin))

    assert resp.status_code == 200
    assert db.session.get(Donation, item_id) is None
    assert AuditLog.query.filter_by(action="ADMIN_DELETE").count() == 1


def test_admin_can_cancel_claimed_donation(client, admin, recipient, donation_factory, headers_for):
    item = donation_factory(status='claimed', claimed_by_id=recipient.id, claimed_at=utcnow())

    resp = client.post(f'/api/donations/{item.id}/cancel', headers=headers_for(admin))

    assert resp.status_code == 200
    db.session.refresh(item)
    assert item.status == 'cancelled'


def test_audit_log_filter(client, admin, recipient, donation_factory, headers_for):
    item = donation_factory()
    client.post(f'/api/donations/{item.id}/claim', headers=headers_for(recipient))

    body = client.get('/api/admin/logs?action=CLAIM_ITEM', headers=headers_for(admin)).get_json()

    assert body['total_count'] == 1
    assert body['items'][0]['user_id'] == recipient.id


# ==========================================
#  DONATION OVERSIGHT
# ==========================================
def test_user_detail_lists_donations_and_claims(client, admin, donor, recipient, donation_factory, headers_for):
    given = donation_factory(title="Given")
    taken = donation_factory(title="Taken", status='claimed', claimed_by_id=recipient.id, claimed_at=utcnow())

    body = client.get(f'/api/admin/users/{donor.id}', headers=headers_for(admin)).get_json()
    assert body['user']['email'] == donor.email
    assert {d['id'] for d in body['donations']} == {given.id, taken.id}
    assert body['claimed_donations'] == []

    body = client.get(f'/api/admin/users/{recipient.id}', headers=headers_for(admin)).get_json()
    assert [d['id'] for d in body['claimed_donations']] == [taken.id]


def test_user_detail_unknown_user(client, admin, headers_for):
    assert client.get('/api/admin/users/999', headers=headers_for(admin)).status_code == 404


def test_admin_donations_filter_by_donor_and_recipient(client, admin, donor, recipient, user_factory,
                                                      donation_factory, headers_for):
    other = user_factory('donor')
    mine = donation_factory(status='claimed', claimed_by_id=recipient.id, claimed_at=utcnow())
    donation_factory(donor_id=other.id)

    by_donor = client.get(f'/api/admin/donations?donor={donor.id}', headers=headers_for(admin)).get_json()
    by_recipient = client.get(f'/api/admin/donations?recipient={recipient.id}',
                              headers=headers_for(admin)).get_json()
    everything = client.get('/api/admin/donations', headers=headers_for(admin)).get_json()

    assert [d['id'] for d in by_donor['items']] == [mine.id]
    assert [d['id'] for d in by_recipient['items']] == [mine.id]
    assert everything['total_count'] == 2


def test_admin_donations_include_contact_details(client, admin, donor, recipient, donation_factory, headers_for):
    donor.phone = '555-0100'
    db.session.commit()
    donation_factory(status='claimed', claimed_by_id=recipient.id, claimed_at=utcnow())

    item = client.get('/api/admin/donations', headers=headers_for(admin)).get_json()['items'][0]

    assert item['donor_contact']['email'] == donor.email
    assert item['donor_contact']['phone'] == '555-0100'
    assert item['recipient_contact']['email'] == recipient.email


def test_admin_donations_date_range(client, admin, donation_factory, headers_for):
    now = utcnow()
    old = donation_factory(title="Old", created_at=now - timedelta(days=10))
    recent = donation_factory(title="Recent", created_at=now - timedelta(days=1))

    def titles(**query):
        resp = client.get('/api/admin/donations', query_string=query, headers=headers_for(admin))
        return [d['title'] for d in resp.get_json()['items']]

    assert titles(date_from=(now - timedelta(days=3)).isoformat()) == [recent.title]
    assert titles(date_to=(now - timedelta(days=3)).isoformat()) == [old.title]


@pytest.mark.parametrize("query", [{'donor': 'abc'}, {'date_from': 'yesterday'},
                                   {'date_from': '2030-01-02T00:00:00', 'date_to': '2030-01-01T00:00:00'}])
def test_admin_donations_rejects_bad_filters(client, admin, headers_for, query):
    resp = client.get('/api/admin/donations', query_string=query, headers=headers_for(admin))
    assert resp.status_code == 400


def test_admin_donation_detail(client, admin, recipient, donation_factory, headers_for):
    item = donation_factory(status='claimed', claimed_by_id=recipient.id, claimed_at=utcnow())

    body = client.get(f'/api/admin/donations/{item.id}', headers=headers_for(admin)).get_json()

    assert body['donation']['id'] == item.id
    assert body['donation']['recipient_contact']['id'] == recipient.id
    assert client.get('/api/admin/donations/999', headers=headers_for(admin)).status_code == 404


def test_admin_triggers_pickup_reminders(client, admin, recipient, donation_factory, headers_for):
    now = utcnow()
    donation_factory(title="Tomorrow Morning", status='claimed', claimed_by_id=recipient.id, claimed_at=now,
                     pickup_start=now + timedelta(hours=12), pickup_end=now + timedelta(hours=14),
                     expiry_date=now + timedelta(days=2))

    with mail.record_messages() as outbox:
        resp = client.post('/api/admin/reminders/pickup', headers=headers_for(admin))

    assert resp.status_code == 200
    assert resp.get_json()['count'] == 1
    assert [m.recipients for m in outbox] == [[recipient.email]]
    assert outbox[0].subject == 'Reminder: Food Donation Pickup Today'
    assert "Tomorrow Morning" in outbox[0].body
    assert AuditLog.query.filter_by(action="PICKUP_REMINDERS").count() == 1


# ==========================================
#  SEED / DEPLOY
# ==========================================
def test_seed_admin_is_idempotent(app):
    first, created = seed_admin(db.session)
    again, created_again = seed_admin(db.session)

    assert created is True
    assert created_again is False
    assert first.id == again.id
    assert first.role == 'admin'
    assert User.query.filter_by(email=ADMIN_EMAIL).count() == 1


def test_deploy_creates_schema_and_admin(app):
    assert deploy(app) is True
    assert deploy(app) is False
    assert User.query.filter_by(role='admin').count() == 1
