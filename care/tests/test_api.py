"""
Integration tests for the clinic care API.

These tests exercise the most important behaviours end to end: patient
listing scoped by role, the view/edit split (including the
administrator carve-out), grant management, messaging with fan-out,
treatment sessions, groups and notifications.  The tests use Django
REST Framework's APIClient within the APITestCase base class.
"""
from datetime import timedelta

from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from care.models import AuditEvent, ChatGroupMember, Message, Notification, PatientAccess, TreatmentSession, User
from care.services import notifications
from care.tests.conftest import bearer_client, make_operator, make_patient


class ClinicAPITests(APITestCase):
    def setUp(self) -> None:
        """Two patients, an administrator, and two operators of which only
        the first is granted (view only) on the first patient."""
        self.admin = make_operator('admin1', role=User.ROLE_ADMIN)
        self.operator = make_operator('operator1', first_name='Olga', last_name='Operator')
        self.support = make_operator('support1', role=User.ROLE_SUPPORT)
        self.patient = make_patient('patient1', first_name='Pat', last_name='One')
        self.other_patient = make_patient('patient2', first_name='Pia', last_name='Two')
        self.grant = PatientAccess.objects.create(patient=self.patient, operator=self.operator, can_view=True)

        self.admin_client = bearer_client(self.admin)
        self.operator_client = bearer_client(self.operator)
        self.support_client = bearer_client(self.support)
        self.patient_client = bearer_client(self.patient)

    # -----------------------------------------------------------------
    # Patient records
    # -----------------------------------------------------------------
    def test_patient_list_is_scoped_by_role(self):
        r = self.admin_client.get('/api/patients')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual({p['id'] for p in r.data['data']}, {self.patient.id, self.other_patient.id})
        self.assertEqual(r.data['pagination']['total'], 2)

        r = self.operator_client.get('/api/patients')
        self.assertEqual([p['id'] for p in r.data['data']], [self.patient.id])

        r = self.support_client.get('/api/patients')
        self.assertEqual(r.data['data'], [])

        r = self.patient_client.get('/api/patients')
        self.assertEqual([p['id'] for p in r.data['data']], [self.patient.id])

    def test_patient_list_search(self):
        r = self.admin_client.get('/api/patients', {'q': 'pia'})
        self.assertEqual([p['id'] for p in r.data['data']], [self.other_patient.id])

    def test_view_requires_grant(self):
        r = self.operator_client.get(f'/api/patients/{self.patient.id}')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data['patient']['medicalHistory'], 'none recorded')

        r = self.operator_client.get(f'/api/patients/{self.other_patient.id}')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(r.data['ok'], False)
        self.assertEqual(r.data['error']['code'], 'forbidden')

    def test_view_is_audited(self):
        self.operator_client.get(f'/api/patients/{self.patient.id}')
        event = AuditEvent.objects.get(action='patient_view')
        self.assertEqual(event.user_id, self.operator.id)
        self.assertEqual(event.object_id, str(self.patient.id))
        self.assertTrue(event.detail['viaGrant'])

    def test_admin_can_view_but_not_edit(self):
        r = self.admin_client.get(f'/api/patients/{self.other_patient.id}')
        self.assertEqual(r.status_code, status.HTTP_200_OK)

        r = self.admin_client.patch(f'/api/patients/{self.patient.id}', {'allergies': 'penicillin'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)
        self.assertIn('cannot edit medical information', str(r.data['error']['message']))
        self.patient.patient_profile.refresh_from_db()
        self.assertEqual(self.patient.patient_profile.allergies, '')

    def test_view_grant_does_not_allow_edit(self):
        r = self.operator_client.patch(f'/api/patients/{self.patient.id}', {'notes': 'x'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(r.data['error']['message'], 'Edit permission required')

    def test_edit_grant_allows_edit_and_sanitises(self):
        PatientAccess.objects.filter(pk=self.grant.pk).update(can_edit=True)
        r = self.operator_client.patch(
            f'/api/patients/{self.patient.id}',
            {'allergies': '<script>x</script>latex', 'isInTreatment': False},
            format='json',
        )
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data['patient']['allergies'], 'xlatex')
        self.assertFalse(r.data['patient']['isInTreatment'])
        self.assertTrue(AuditEvent.objects.filter(action='patient_update').exists())

    def test_patient_edits_own_record_only(self):
        r = self.patient_client.patch(f'/api/patients/{self.patient.id}', {'phone': '555-0100'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data['patient']['phone'], '555-0100')

        r = self.patient_client.get(f'/api/patients/{self.other_patient.id}')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

    def test_unknown_patient_is_404_for_admin(self):
        r = self.admin_client.get('/api/patients/999999')
        self.assertEqual(r.status_code, status.HTTP_404_NOT_FOUND)

    def test_only_admin_creates_patients(self):
        payload = {'firstName': 'New', 'lastName': 'Patient', 'email': 'new@example.com'}
        r = self.operator_client.post('/api/patients', payload, format='json')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

        r = self.admin_client.post('/api/patients', payload, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        self.assertTrue(r.data['initialPassword'])
        created = User.objects.get(id=r.data['patient']['id'])
        self.assertTrue(created.is_patient)
        self.assertTrue(created.check_password(r.data['initialPassword']))

    # -----------------------------------------------------------------
    # Grants
    # -----------------------------------------------------------------
    def test_admin_grants_and_notifies_both_sides(self):
        url = f'/api/patients/{self.patient.id}/access'
        r = self.admin_client.post(url, {'operatorId': self.support.id, 'canEdit': True}, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        self.assertTrue(r.data['access']['canEdit'])
        self.assertTrue(Notification.objects.filter(recipient=self.support, type=notifications.PATIENT_ASSIGNED).exists())
        self.assertTrue(Notification.objects.filter(recipient=self.patient, type=notifications.OPERATOR_ASSIGNED).exists())

        # support can now edit
        r = self.support_client.patch(f'/api/patients/{self.patient.id}', {'notes': 'ok'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_200_OK)

        # re-granting updates in place
        r = self.admin_client.post(url, {'operatorId': self.support.id, 'canEdit': False}, format='json')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(PatientAccess.objects.filter(patient=self.patient, operator=self.support).count(), 1)

        r = self.admin_client.get(url)
        self.assertEqual([a['operatorId'] for a in r.data['data']], sorted([self.operator.id, self.support.id]))

    def test_grant_with_can_view_false_revokes(self):
        url = f'/api/patients/{self.patient.id}/access'
        r = self.admin_client.post(url, {'operatorId': self.operator.id, 'canView': False}, format='json')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertTrue(r.data['revoked'])
        self.assertIsNone(r.data['access'])
        r = self.operator_client.get(f'/api/patients/{self.patient.id}')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

    def test_revoke_endpoint_notifies_operator(self):
        r = self.admin_client.delete(f'/api/patients/{self.patient.id}/access/{self.operator.id}')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertTrue(r.data['revoked'])
        self.assertTrue(Notification.objects.filter(recipient=self.operator, type=notifications.ACCESS_REVOKED).exists())
        r = self.admin_client.delete(f'/api/patients/{self.patient.id}/access/{self.operator.id}')
        self.assertFalse(r.data['revoked'])

    def test_grant_management_is_admin_only(self):
        r = self.operator_client.post(
            f'/api/patients/{self.patient.id}/access', {'operatorId': self.support.id}, format='json'
        )
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

    # -----------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------
    def test_operator_message_notifies_patient(self):
        r = self.operator_client.post('/api/messages', {'patientId': self.patient.id, 'content': 'How are you?'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        self.assertEqual(r.data['message']['senderId'], self.operator.id)
        self.assertEqual(r.data['message']['operatorId'], self.operator.id)
        note = Notification.objects.get(recipient=self.patient, type=notifications.NEW_MESSAGE)
        self.assertEqual(note.data['messageId'], r.data['message']['id'])
        self.assertFalse(Notification.objects.filter(recipient=self.operator).exists())

    def test_patient_message_requires_operator_and_notifies_viewers(self):
        r = self.patient_client.post('/api/messages', {'patientId': self.patient.id, 'content': 'hi'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)

        r = self.patient_client.post(
            '/api/messages',
            {'patientId': self.patient.id, 'content': 'hi', 'operatorId': self.operator.id, 'mentions': [self.operator.id, self.support.id]},
            format='json',
        )
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        # mentions are limited to people in the thread
        self.assertEqual(r.data['message']['mentions'], [self.operator.id])
        types = set(Notification.objects.filter(recipient=self.operator).values_list('type', flat=True))
        self.assertEqual(types, {notifications.NEW_MESSAGE, notifications.MENTION})
        self.assertFalse(Notification.objects.filter(recipient=self.support).exists())

    def test_name_mentions_resolve_against_the_care_team(self):
        self.admin.first_name = 'Olive'
        self.admin.save(update_fields=['first_name'])
        PatientAccess.objects.create(patient=self.patient, operator=self.admin, can_view=True)
        r = self.patient_client.post(
            '/api/messages',
            {'patientId': self.patient.id, 'content': 'thanks @OLG and @oli', 'operatorId': self.operator.id},
            format='json',
        )
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        # administrators are not part of the chat, so @oli matches nobody
        self.assertEqual(r.data['message']['mentions'], [self.operator.id])
        self.assertTrue(Notification.objects.filter(recipient=self.operator, type=notifications.MENTION).exists())
        self.assertFalse(Notification.objects.filter(recipient=self.admin, type=notifications.MENTION).exists())

    def test_group_name_mentions_merge_with_explicit_ids(self):
        self.support.last_name = 'Sanders'
        self.support.save(update_fields=['last_name'])
        r = self.operator_client.post('/api/groups', {'name': 'Day shift', 'memberIds': [self.support.id]}, format='json')
        gid = r.data['group']['id']

        r = self.operator_client.post(
            f'/api/groups/{gid}/messages',
            {'content': '@sanders can you cover?', 'mentions': [self.admin.id, self.support.id]},
            format='json',
        )
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        self.assertEqual(r.data['message']['mentions'], [self.support.id])
        self.assertEqual(
            Notification.objects.filter(recipient=self.support, type=notifications.MENTION).count(), 1
        )

    def test_admin_cannot_post_messages(self):
        r = self.admin_client.post('/api/messages', {'patientId': self.patient.id, 'content': 'hello'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Message.objects.exists())

    def test_message_to_unviewable_patient_is_denied(self):
        r = self.support_client.post('/api/messages', {'patientId': self.patient.id, 'content': 'hello'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

    def test_message_content_is_validated(self):
        r = self.operator_client.post('/api/messages', {'patientId': self.patient.id, 'content': '<b></b>'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        r = self.operator_client.post('/api/messages', {'patientId': self.patient.id, 'content': 'x' * 2001}, format='json')
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)

    def test_thread_history_and_read(self):
        self.operator_client.post('/api/messages', {'patientId': self.patient.id, 'content': 'one'}, format='json')
        self.operator_client.post('/api/messages', {'patientId': self.patient.id, 'content': 'two'}, format='json')

        r = self.patient_client.get(f'/api/messages/patient/{self.patient.id}')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual([m['content'] for m in r.data['data']], ['one', 'two'])

        r = self.patient_client.put(f'/api/messages/patient/{self.patient.id}/read-all')
        self.assertEqual(r.data['updated'], 2)
        self.assertFalse(Message.objects.filter(is_read=False).exists())

        r = self.support_client.get(f'/api/messages/patient/{self.patient.id}')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

    def test_thread_operators_lists_viewers(self):
        r = self.patient_client.get(f'/api/messages/patient/{self.patient.id}/operators')
        self.assertEqual([o['id'] for o in r.data['data']], [self.operator.id])

    # -----------------------------------------------------------------
    # Treatment sessions
    # -----------------------------------------------------------------
    def test_sessions_need_edit_to_schedule(self):
        when = (timezone.now() + timedelta(days=1)).isoformat()
        url = f'/api/patients/{self.patient.id}/sessions'
        r = self.operator_client.post(url, {'scheduledAt': when}, format='json')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)
        r = self.admin_client.post(url, {'scheduledAt': when}, format='json')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

        PatientAccess.objects.filter(pk=self.grant.pk).update(can_edit=True)
        r = self.operator_client.post(url, {'scheduledAt': when, 'notes': 'first visit'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        session_id = r.data['session']['id']
        self.assertEqual(r.data['session']['operatorId'], self.operator.id)
        self.assertTrue(Notification.objects.filter(recipient=self.patient, type=notifications.SESSION_SCHEDULED).exists())

        r = self.admin_client.get(url)
        self.assertEqual([s['id'] for s in r.data['data']], [session_id])

        r = self.operator_client.patch(f'/api/sessions/{session_id}', {'status': 'completed'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(TreatmentSession.objects.get(id=session_id).status, 'completed')
        note = Notification.objects.filter(recipient=self.patient, type=notifications.SESSION_UPDATED).get()
        self.assertEqual(note.data['eventType'], 'SESSION_COMPLETED')

        r = self.support_client.patch(f'/api/sessions/{session_id}', {'status': 'cancelled'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

    # -----------------------------------------------------------------
    # Groups
    # -----------------------------------------------------------------
    def test_group_lifecycle(self):
        r = self.operator_client.post('/api/groups', {'name': 'Night shift', 'memberIds': [self.support.id]}, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        gid = r.data['group']['id']
        self.assertEqual(r.data['group']['memberCount'], 2)
        self.assertTrue(Notification.objects.filter(recipient=self.support, type=notifications.GROUP_ADDED).exists())

        r = self.support_client.post(f'/api/groups/{gid}/messages', {'content': 'handover done'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        self.assertEqual(r.data['message']['groupId'], gid)
        self.assertTrue(Notification.objects.filter(recipient=self.operator, type=notifications.NEW_MESSAGE).exists())

        # non-members neither read nor post
        r = self.admin_client.get(f'/api/groups/{gid}/messages')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

        # plain members cannot add people
        r = self.support_client.post(f'/api/groups/{gid}/members', {'userIds': [self.admin.id]}, format='json')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)
        r = self.operator_client.post(f'/api/groups/{gid}/members', {'userIds': [self.admin.id]}, format='json')
        self.assertEqual(r.data['added'], [self.admin.id])

        r = self.support_client.post(f'/api/groups/{gid}/leave')
        self.assertTrue(r.data['left'])
        self.assertIsNotNone(ChatGroupMember.objects.get(group_id=gid, user=self.support).left_at)
        r = self.support_client.get(f'/api/groups/{gid}/messages')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

        r = self.operator_client.get('/api/groups')
        self.assertEqual([g['id'] for g in r.data['data']], [gid])

    def test_patients_cannot_create_groups(self):
        r = self.patient_client.post('/api/groups', {'name': 'mine'}, format='json')
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

    # -----------------------------------------------------------------
    # Notifications
    # -----------------------------------------------------------------
    def test_notification_inbox(self):
        for i in range(3):
            notifications.create_notification(recipient_id=self.patient.id, title=f't{i}', message='m', type=notifications.NEW_MESSAGE)
        notifications.create_notification(recipient_id=self.operator.id, title='other', message='m', type=notifications.NEW_MESSAGE)

        r = self.patient_client.get('/api/notifications/unread-count')
        self.assertEqual(r.data['count'], 3)

        r = self.patient_client.get('/api/notifications', {'pageSize': 2})
        self.assertEqual(len(r.data['data']), 2)
        self.assertEqual(r.data['pagination']['total'], 3)
        first_id = r.data['data'][0]['id']

        r = self.patient_client.put(f'/api/notifications/{first_id}/read')
        self.assertTrue(r.data['notification']['isRead'])
        r = self.patient_client.get('/api/notifications', {'unread': 'true'})
        self.assertEqual(r.data['pagination']['total'], 2)

        # someone else's notification is not found
        theirs = Notification.objects.get(recipient=self.operator).id
        r = self.patient_client.put(f'/api/notifications/{theirs}/read')
        self.assertEqual(r.status_code, status.HTTP_404_NOT_FOUND)

        r = self.patient_client.put('/api/notifications/mark-all-read')
        self.assertEqual(r.data['updated'], 2)
        self.assertEqual(self.patient_client.get('/api/notifications/unread-count').data['count'], 0)

    def test_healthz(self):
        r = self.client.get('/healthz')
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.json()['db'])
