"""Shared fixtures: a fake FalconPy module and helpers to write input files."""
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest


def ok(resources, status_code=200):
    return {'status_code': status_code, 'headers': {}, 'body': {'errors': [], 'resources': resources}}


def error(message, status_code):
    return {'status_code': status_code, 'headers': {},
            'body': {'errors': [{'code': status_code, 'message': message}], 'resources': []}}


class FakeFalconCloud:
    """Stands in for the Falcon API behind the FalconPy service classes."""

    def __init__(self):
        self.platforms = {}
        self.online = set()
        self.token_response = {'status_code': 201, 'headers': {},
                               'body': {'access_token': 'token', 'expires_in': 1799}}

    def get_device_details(self, ids):
        if ids not in self.platforms:
            return error('Device not found', 404)
        return ok([{'device_id': ids, 'platform_name': self.platforms[ids]}])

    def reveal_uninstall_token(self, device_id, audit_message):
        return ok([{'device_id': device_id, 'uninstall_token': f'token-{device_id}'}])

    def init_session(self, device_id, queue_offline):
        return ok([{'session_id': f'session-{device_id}',
                    'offline_queued': queue_offline and device_id not in self.online}], 201)

    def execute_admin_command(self, base_command, command_string, device_id, session_id, persist):
        return ok([{'session_id': session_id, 'cloud_request_id': f'request-{device_id}',
                    'queued_command_offline': False}], 201)


@pytest.fixture
def cloud():
    return FakeFalconCloud()


@pytest.fixture
def falconpy(cloud):
    auth = MagicMock(name='OAuth2()')
    auth.token.side_effect = lambda: cloud.token_response

    hosts = MagicMock(name='Hosts()')
    hosts.get_device_details.side_effect = cloud.get_device_details
    sensor_update = MagicMock(name='SensorUpdatePolicy()')
    sensor_update.reveal_uninstall_token.side_effect = cloud.reveal_uninstall_token
    rtr = MagicMock(name='RealTimeResponse()')
    rtr.init_session.side_effect = cloud.init_session
    rtr_admin = MagicMock(name='RealTimeResponseAdmin()')
    rtr_admin.execute_admin_command.side_effect = cloud.execute_admin_command

    return SimpleNamespace(
        OAuth2=MagicMock(return_value=auth),
        Hosts=MagicMock(return_value=hosts),
        SensorUpdatePolicy=MagicMock(return_value=sensor_update),
        RealTimeResponse=MagicMock(return_value=rtr),
        RealTimeResponseAdmin=MagicMock(return_value=rtr_admin),
    )


@pytest.fixture
def write_csv(tmp_path):
    def _write(content, name='hosts.csv'):
        path = tmp_path / name
        path.write_text(content)
        return str(path)
    return _write
