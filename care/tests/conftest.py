import pytest
from channels.layers import channel_layers
from django.core.cache import cache
from rest_framework.test import APIClient

from care.authentication import tokens_for_user
from care.models import PatientAccess, PatientProfile, User
from care.realtime.presence import registry
from care.realtime.rooms import broker


@pytest.fixture(autouse=True)
def fresh_state():
    """Throttle counters, the in-memory channel layer and presence are
    process-wide; start every test from a clean slate."""
    cache.clear()
    channel_layers.backends.clear()
    registry.clear()
    broker.reset()
    yield
    registry.clear()
    channel_layers.backends.clear()


def make_operator(username, role=User.ROLE_BASIC, password='P@ssw0rd-123', **extra):
    return User.objects.create_user(
        username=username, password=password, role=role, user_type=User.TYPE_OPERATOR, **extra
    )


def make_patient(username, password='P@ssw0rd-123', **extra):
    user = User.objects.create_user(
        username=username, password=password, user_type=User.TYPE_PATIENT, **extra
    )
    PatientProfile.objects.create(user=user, medical_history='none recorded')
    return user


@pytest.fixture
def admin(db):
    return make_operator('admin1', role=User.ROLE_ADMIN, first_name='Ada', last_name='Admin')


@pytest.fixture
def operator(db):
    return make_operator('operator1', first_name='Olga', last_name='Operator')


@pytest.fixture
def other_operator(db):
    return make_operator('operator2', role=User.ROLE_SUPPORT)


@pytest.fixture
def patient(db):
    return make_patient('patient1', first_name='Pat', last_name='One')


@pytest.fixture
def other_patient(db):
    return make_patient('patient2', first_name='Pia', last_name='Two')


@pytest.fixture
def view_grant(patient, operator):
    return PatientAccess.objects.create(patient=patient, operator=operator, can_view=True, can_edit=False)


@pytest.fixture
def edit_grant(patient, operator):
    return PatientAccess.objects.create(patient=patient, operator=operator, can_view=True, can_edit=True)


def bearer_client(user) -> APIClient:
    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens_for_user(user)['access']}")
    return client


@pytest.fixture
def client_for():
    return bearer_client
