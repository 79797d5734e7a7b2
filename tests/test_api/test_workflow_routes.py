import pytest
from fastapi.testclient import TestClient

from autoflow.config import Settings
from autoflow.main import create_app

API = '/api/v1'

LOG_ONLY = [{'type': 'log_result', 'parameters': {'message': 'hello'}}]


@pytest.fixture
def client(session_factory):
    config = Settings(SCHEDULER_ENABLED=True, APP_ENV='test', LOG_LEVEL='WARNING')
    app = create_app(session_factory=session_factory, config=config)
    with TestClient(app) as test_client:
        yield test_client


def _create(client, **overrides):
    payload = {'name': 'Ping', 'actions': LOG_ONLY, **overrides}
    response = client.post(f'{API}/workflows/', json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_reports_scheduler_state(client):
    response = client.get(f'{API}/health')

    assert response.status_code == 200
    body = response.json()
    assert body['status'] == 'healthy'
    assert body['scheduler']['running'] is True


def test_create_and_execute_manual_workflow(client):
    workflow = _create(client)

    response = client.post(f"{API}/workflows/{workflow['id']}/execute")

    assert response.status_code == 200
    body = response.json()
    assert body['success'] is True
    assert body['scheduled'] is False
    assert body['data']['results'][0]['data']['message'] == 'hello'
    logs = client.get(f"{API}/workflows/{workflow['id']}/logs").json()
    assert sorted(log['status'] for log in logs) == ['running', 'success']
    detail = client.get(f"{API}/workflows/{workflow['id']}").json()
    assert detail['execution_count'] == 1
    assert detail['success_rate'] == 100.0


def test_cron_workflow_is_scheduled_and_paused(client):
    workflow = _create(client, trigger={'type': 'cron', 'schedule': '0 * * * *'})

    tasks = client.get(f'{API}/scheduler/tasks').json()
    assert [t['workflow_id'] for t in tasks] == [workflow['id']]

    run = client.post(f"{API}/workflows/{workflow['id']}/execute")
    assert run.status_code == 200
    assert run.json()['scheduled'] is True
    assert run.json()['success'] is True

    paused = client.post(f"{API}/workflows/{workflow['id']}/pause")
    assert paused.json()['status'] == 'paused'
    assert client.get(f'{API}/scheduler/tasks').json() == []

    rejected = client.post(f"{API}/workflows/{workflow['id']}/execute")
    assert rejected.status_code == 409
    assert 'not active' in rejected.json()['detail']

    client.post(f"{API}/workflows/{workflow['id']}/resume")
    assert client.get(f"{API}/scheduler/tasks/{workflow['id']}").status_code == 200


def test_invalid_definitions_are_rejected(client):
    bad_cron = client.post(f'{API}/workflows/', json={'name': 'x', 'trigger': {'type': 'cron', 'schedule': '* *'}})
    bad_action = client.post(f'{API}/workflows/', json={'name': 'x', 'actions': [{'type': 'explode'}]})

    assert bad_cron.status_code == 422
    assert bad_action.status_code == 422


def test_delete_unschedules_workflow(client):
    workflow = _create(client, trigger={'type': 'cron', 'schedule': '*/5 * * * *'})

    response = client.delete(f"{API}/workflows/{workflow['id']}")

    assert response.status_code == 200
    assert client.get(f"{API}/workflows/{workflow['id']}").status_code == 404
    assert client.get(f'{API}/scheduler/stats').json()['total_scheduled_workflows'] == 0


def test_executions_listing_and_stop(client):
    workflow = _create(client)
    client.post(f"{API}/workflows/{workflow['id']}/execute")

    executions = client.get(f'{API}/executions/', params={'status': 'success'}).json()
    assert len(executions) == 1
    assert executions[0]['workflow_id'] == workflow['id']
    assert client.get(f'{API}/executions/running').json() == []
    assert client.post(f'{API}/executions/unknown/stop').status_code == 404


def test_scheduler_reload(client):
    _create(client, trigger={'type': 'cron', 'schedule': '0 9 * * *'})

    response = client.post(f'{API}/scheduler/reload')

    assert response.status_code == 200
    assert response.json()['scheduled'] == 1


def test_websocket_receives_workflow_status_events(client):
    workflow = _create(client)

    with client.websocket_connect('/ws?subscribe=workflow_status') as websocket:
        hello = websocket.receive_json()
        assert hello['subscriptions'] == ['workflow_status']

        client.post(f"{API}/workflows/{workflow['id']}/execute")

        started = websocket.receive_json()
        finished = websocket.receive_json()

    assert started['type'] == 'workflow_status'
    assert started['data']['status'] == 'running'
    assert finished['data']['status'] == 'success'
    assert finished['data']['workflowId'] == workflow['id']


def test_failed_scheduled_run_is_reported_as_failure(client):
    workflow = _create(
        client,
        trigger={'type': 'cron', 'schedule': '0 * * * *'},
        actions=[{'type': 'fetch_data', 'parameters': {}}],
    )

    response = client.post(f"{API}/workflows/{workflow['id']}/execute")

    assert response.status_code == 200
    body = response.json()
    assert body['scheduled'] is True
    assert body['success'] is False
    assert 'url' in body['error']
    assert body['execution_id'] is not None
    logs = client.get(f"{API}/workflows/{workflow['id']}/logs").json()
    assert sorted(log['status'] for log in logs) == ['error', 'running']


def test_invalid_cron_error_message_is_returned(client):
    response = client.post(
        f'{API}/workflows/',
        json={'name': 'x', 'trigger': {'type': 'cron', 'schedule': '61 * * * *'}},
    )

    assert response.status_code == 422
    assert response.json()['detail'] == "Invalid cron expression: '61 * * * *'"
