import json

import httpx
import pytest

from autoflow.core.exceptions import ActionError, MissingParameterError, PersistenceError, ValidationError
from autoflow.models.execution import ExecutionContext
from autoflow.services.actions import ActionDispatcher, generate_csv, generate_text_report


def _context():
    return ExecutionContext(workflow_id='wf-1')


def _dispatcher_with(handler, **kwargs):
    return ActionDispatcher(transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.asyncio
async def test_fetch_data_stores_json_in_context():
    seen = {}

    def handler(request):
        seen['method'] = request.method
        seen['headers'] = request.headers
        seen['body'] = request.content
        return httpx.Response(200, json={'total': 42})

    dispatcher = _dispatcher_with(handler)
    context = _context()

    result = await dispatcher.dispatch(
        'fetch_data',
        {
            'url': 'https://api.example.test/sales',
            'method': 'post',
            'headers': {'X-Token': 'abc'},
            'body': {'day': 'today'},
            'storeAs': 'sales',
        },
        context,
    )

    assert result == {'total': 42}
    assert context.variables['sales'] == {'total': 42}
    assert seen['method'] == 'POST'
    assert seen['headers']['x-token'] == 'abc'
    assert seen['headers']['content-type'] == 'application/json'
    assert json.loads(seen['body']) == {'day': 'today'}


@pytest.mark.asyncio
async def test_fetch_data_non_2xx_is_action_error():
    dispatcher = _dispatcher_with(lambda request: httpx.Response(503))

    with pytest.raises(ActionError, match='HTTP 503'):
        await dispatcher.dispatch('fetch_data', {'url': 'https://api.example.test/down'}, _context())


@pytest.mark.asyncio
async def test_fetch_data_without_url_is_missing_parameter():
    dispatcher = ActionDispatcher()

    with pytest.raises(MissingParameterError, match='url') as exc_info:
        await dispatcher.dispatch('fetch_data', {}, _context())

    assert isinstance(exc_info.value, ActionError)
    assert isinstance(exc_info.value, ValidationError)


@pytest.mark.asyncio
async def test_generate_report_csv_with_empty_data_is_empty():
    result = await ActionDispatcher().dispatch('generate_report', {'format': 'csv', 'data': []}, _context())

    assert result['content'] == ''
    assert result['size'] == 0
    assert result['format'] == 'csv'


@pytest.mark.asyncio
async def test_generate_report_json_defaults_to_context_variables():
    context = _context()
    context.variables['sales'] = {'total': 3}

    result = await ActionDispatcher().dispatch('generate_report', {}, context)

    assert result['format'] == 'json'
    assert json.loads(result['content']) == {'sales': {'total': 3}}
    assert result['path'] is None


@pytest.mark.asyncio
async def test_generate_report_writes_output_file(tmp_path):
    target = tmp_path / 'reports' / 'daily' / 'sales.csv'
    data = [{'region': 'north', 'total': 10}, {'region': 'south', 'total': 7}]

    result = await ActionDispatcher().dispatch(
        'generate_report',
        {'format': 'csv', 'data': data, 'outputPath': str(target), 'storeAs': 'report'},
        _context(),
    )

    assert target.read_text(encoding='utf-8') == 'region,total\nnorth,10\nsouth,7'
    assert result['size'] == len(result['content'])


@pytest.mark.asyncio
async def test_generate_report_rejects_unknown_format():
    with pytest.raises(ActionError, match='Unsupported report format'):
        await ActionDispatcher().dispatch('generate_report', {'format': 'pdf', 'data': {}}, _context())


def test_text_report_template_and_default_layout():
    data = {'name': 'Sales', 'total': 12}

    assert generate_text_report(data, 'Report {{name}}: {{total}} ({{missing}})') == 'Report Sales: 12 ({{missing}})'
    assert generate_text_report(data) == 'name: "Sales"\ntotal: 12'


def test_csv_requires_list_of_objects():
    assert generate_csv({'a': 1}) == ''
    assert generate_csv(['a', 'b']) == ''
    assert generate_csv([{'a': 1, 'b': None}]) == 'a,b\n1,'


@pytest.mark.asyncio
async def test_send_email_normalizes_recipients():
    context = _context()

    result = await ActionDispatcher().dispatch(
        'send_email',
        {'to': 'ops@example.com', 'subject': 'Daily', 'body': {'rows': 2}, 'storeAs': 'email'},
        context,
    )

    assert result['to'] == ['ops@example.com']
    assert result['attachments'] == []
    assert result['body'] == '{"rows": 2}'
    assert context.variables['email'] is result


@pytest.mark.asyncio
@pytest.mark.parametrize('missing', ['to', 'subject', 'body'])
async def test_send_email_requires_all_fields(missing):
    parameters = {'to': ['a@example.com'], 'subject': 's', 'body': 'b'}
    parameters.pop(missing)

    with pytest.raises(MissingParameterError):
        await ActionDispatcher().dispatch('send_email', parameters, _context())


@pytest.mark.asyncio
async def test_check_system_metrics_persists_and_alerts(metrics_store):
    dispatcher = ActionDispatcher(metrics_store=metrics_store, system_sampler=lambda: (91.0, 40.0))

    result = await dispatcher.dispatch(
        'check_system_metrics',
        {'thresholds': {'cpu': 80, 'memory': 85}},
        _context(),
    )

    assert result['cpu_usage'] == 91.0
    assert result['alerts'] == ['CPU usage 91.0% exceeds threshold 80%']
    latest = await metrics_store.get_latest()
    assert latest.cpu_usage == 91.0
    assert latest.memory_usage == 40.0


@pytest.mark.asyncio
async def test_check_system_metrics_survives_store_failure():
    class BrokenMetricsStore:
        async def record_sample(self, cpu, memory):
            raise PersistenceError('read-only database')

    dispatcher = ActionDispatcher(metrics_store=BrokenMetricsStore(), system_sampler=lambda: (5.0, 6.0))

    result = await dispatcher.dispatch('check_system_metrics', {}, _context())

    assert result['memory_usage'] == 6.0
    assert 'alerts' not in result


@pytest.mark.asyncio
async def test_log_result_emits_entry_at_requested_level(caplog):
    context = _context()
    context.variables['count'] = 3

    with caplog.at_level('WARNING', logger='autoflow.workflow'):
        entry = await ActionDispatcher().dispatch('log_result', {'message': 'low stock', 'level': 'warn'}, context)

    assert entry['data'] == {'count': 3}
    assert entry['workflowId'] == 'wf-1'
    assert entry['executionId'] == context.execution_id
    assert any(record.levelname == 'WARNING' and 'low stock' in record.getMessage() for record in caplog.records)
