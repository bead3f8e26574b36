"""
Tests for the local and remote solver backends.
"""

import pytest
import requests

from mcv_geometry import backends
from mcv_geometry.backends import LocalBackend, RemoteBackend, create_backend
from mcv_geometry.config import BackendSettings, Config


class FakeResponse:
    def __init__(self, status_code=200, body=None, invalid_json=False):
        self.status_code = status_code
        self.ok = status_code < 400
        self._body = body
        self._invalid_json = invalid_json

    def json(self):
        if self._invalid_json:
            raise ValueError("Expecting value")
        return self._body


class FakeSession:
    """Replays queued responses (or raises queued exceptions) for each post."""

    def __init__(self, *outcomes):
        self.headers = {}
        self.outcomes = list(outcomes)
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append({'url': url, 'json': json, 'timeout': timeout})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def no_sleep(monkeypatch):
    delays = []
    monkeypatch.setattr(backends.time, 'sleep', delays.append)
    return delays


class TestLocalBackend:

    def test_health(self):
        response = LocalBackend().health()
        assert response['ok']
        assert response['data']['backend'] == 'python-numpy'

    def test_solve_pose(self, exact_scene):
        correspondences = [
            {'pixel': list(p), 'world': list(w)}
            for p, w in zip(exact_scene.pixels, exact_scene.world)
        ]

        response = LocalBackend().solve_pose(correspondences, image_size=(1280, 720))

        assert response['ok']
        assert response['data']['focalLength'] == pytest.approx(800.0, rel=1e-6)

    def test_failures_are_envelopes(self):
        response = LocalBackend().solve_tick_boundary([], [])
        assert response['error']['code'] == 'INSUFFICIENT_SAMPLES'

    def test_unknown_op(self):
        assert LocalBackend().call('nope')['error']['code'] == 'UNKNOWN_OP'


class TestRemoteBackend:

    def test_posts_envelope(self):
        body = {'ok': True, 'data': {'backend': 'remote', 'version': '1'}}
        session = FakeSession(FakeResponse(200, body))
        backend = RemoteBackend('http://solver:8000/', timeout=5, session=session)

        response = backend.health()

        assert response == body
        assert session.calls == [{
            'url': 'http://solver:8000/api/mcv',
            'json': {'op': 'health', 'args': {}},
            'timeout': 5,
        }]
        assert session.headers['Content-Type'] == 'application/json'

    def test_solver_failure_passes_through(self):
        body = {'ok': False, 'error': {'code': 'PARALLEL_LINES', 'message': 'parallel'}}
        backend = RemoteBackend('http://solver', session=FakeSession(FakeResponse(200, body)))

        assert backend.solve_tick_boundary([], []) == body

    def test_error_envelope_with_http_status(self):
        body = {'ok': False, 'error': {'code': 'UNKNOWN_OP', 'message': 'Unsupported operation: x'}}
        backend = RemoteBackend('http://solver', session=FakeSession(FakeResponse(400, body)))

        assert backend.call('x') == body

    def test_http_error(self):
        backend = RemoteBackend('http://solver', session=FakeSession(FakeResponse(502, None, invalid_json=True)))

        response = backend.health()

        assert response['ok'] is False
        assert response['error'] == {'code': 'HTTP_ERROR', 'message': 'HTTP 502'}

    def test_invalid_json(self):
        backend = RemoteBackend('http://solver', session=FakeSession(FakeResponse(200, invalid_json=True)))
        assert backend.health()['error']['code'] == 'HTTP_ERROR'

    def test_malformed_envelope(self):
        backend = RemoteBackend('http://solver', session=FakeSession(FakeResponse(200, ['not', 'an', 'envelope'])))
        assert backend.health()['error']['code'] == 'HTTP_ERROR'

    def test_retries_connection_errors(self, no_sleep):
        body = {'ok': True, 'data': {}}
        session = FakeSession(
            requests.exceptions.ConnectionError("refused"),
            requests.exceptions.Timeout("slow"),
            FakeResponse(200, body),
        )
        backend = RemoteBackend('http://solver', max_retries=3, retry_delay=0.5, session=session)

        assert backend.health() == body
        assert len(session.calls) == 3
        assert no_sleep == [0.5, 1.0]

    def test_network_error_after_retries(self, no_sleep):
        session = FakeSession(*[requests.exceptions.ConnectionError("refused")] * 3)
        backend = RemoteBackend('http://solver', max_retries=3, retry_delay=0.1, session=session)

        response = backend.health()

        assert response['error']['code'] == 'NETWORK_ERROR'
        assert 'refused' in response['error']['details']
        assert len(session.calls) == 3
        assert len(no_sleep) == 2

    def test_other_request_errors_are_not_retried(self, no_sleep):
        session = FakeSession(requests.exceptions.InvalidURL("bad url"))
        backend = RemoteBackend('http://solver', session=session)

        assert backend.health()['error']['code'] == 'NETWORK_ERROR'
        assert len(session.calls) == 1
        assert no_sleep == []


class TestCreateBackend:

    def test_default_is_local(self):
        assert isinstance(create_backend(), LocalBackend)

    def test_remote(self):
        config = Config(backend=BackendSettings(mode='remote', url='http://solver:9000', timeout=3))

        backend = create_backend(config)

        assert isinstance(backend, RemoteBackend)
        assert backend.url == 'http://solver:9000'
        assert backend.timeout == 3

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            create_backend(Config(backend=BackendSettings(mode='grpc')))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
