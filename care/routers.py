"""
URL mappings for the clinic care API.

Trailing slashes are deliberately omitted.  Patient ids in the path use
the ``pid`` converter, which lets malformed ids through to the access
gate so they are reported as a bad request rather than a 404.
"""
from django.urls import include, path, register_converter

from .auth_views import jwt_logout_view, jwt_refresh_view, login_view, me_view
from .views import health
from .views.access import patient_access, revoke_patient_access
from .views.groups import group_leave, group_members, group_messages, groups
from .views.messages import message_read, patient_messages, patient_operators, patient_thread_read, send_message
from .views.notifications import notification_read, notifications, notifications_mark_all_read, notifications_unread_count
from .views.patients import patient_detail, patients
from .views.sessions import patient_sessions, session_detail


class PatientIdConverter:
    regex = '[^/]+'

    def to_python(self, value):
        try:
            return int(value)
        except ValueError:
            return value

    def to_url(self, value):
        return str(value)


register_converter(PatientIdConverter, 'pid')


urlpatterns = [
    path('', include('django_prometheus.urls')),
    path('healthz', health.healthz),
    # Authentication
    path('api/auth/login', login_view, name='login_view'),
    path('api/auth/refresh', jwt_refresh_view, name='jwt_refresh_view'),
    path('api/auth/logout', jwt_logout_view, name='jwt_logout_view'),
    path('api/auth/me', me_view, name='me_view'),
    # Patients
    path('api/patients', patients),
    path('api/patients/<pid:patient_id>', patient_detail),
    path('api/patients/<pid:patient_id>/access', patient_access),
    path('api/patients/<pid:patient_id>/access/<int:operator_id>', revoke_patient_access),
    path('api/patients/<pid:patient_id>/sessions', patient_sessions),
    path('api/sessions/<int:session_id>', session_detail),
    # Messages
    path('api/messages', send_message),
    path('api/messages/<int:message_id>/read', message_read),
    path('api/messages/patient/<pid:patient_id>', patient_messages),
    path('api/messages/patient/<pid:patient_id>/read-all', patient_thread_read),
    path('api/messages/patient/<pid:patient_id>/operators', patient_operators),
    # Groups
    path('api/groups', groups),
    path('api/groups/<int:group_id>/members', group_members),
    path('api/groups/<int:group_id>/leave', group_leave),
    path('api/groups/<int:group_id>/messages', group_messages),
    # Notifications
    path('api/notifications', notifications),
    path('api/notifications/unread-count', notifications_unread_count),
    path('api/notifications/mark-all-read', notifications_mark_all_read),
    path('api/notifications/<int:notification_id>/read', notification_read),
]
