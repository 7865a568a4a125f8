import asyncio
import datetime
import json

import httpx
import pytest

from app.errors import (
    AuthenticationError,
    RemoteFailure,
    SchedulingConflictError,
    UsageRecordingError,
    ValidationError,
)
from app.extensions import db
from app.models import Appointment, InventoryItem, InventoryUsage
from app.services.api_client import GroomingApiClient, StaticTokenProvider
from app.services.appointment_workflow import (
    AppointmentWorkflow,
    WorkflowContext,
    edit_form_defaults,
)

ADMIN_EMAIL = 'admin@example.com'


@pytest.fixture
def run_workflow(make_api):
    """Run ``operation(workflow)`` against the test app over HTTP."""

    def runner(operation, timezone='UTC', user=ADMIN_EMAIL):
        async def scenario():
            async with make_api() as api:
                context = WorkflowContext(api=api, current_user=user, timezone=timezone)
                return await operation(AppointmentWorkflow(context))

        return asyncio.run(scenario())

    return runner


@pytest.fixture
def edit_request(sample_appointment, groomers, services):
    return {
        'appointmentId': sample_appointment.id,
        'status': 'confirmed',
        'notes': 'Bring the blue harness',
        'appointmentDate': '2024-06-01',
        'appointmentTime': '15:00',
        'groomerId': groomers['alex'].id,
        'services': [services['bath'].id, services['nails'].id],
    }


def _stored(appointment_id):
    db.session.expire_all()
    return db.session.get(Appointment, appointment_id)


@pytest.mark.workflow
class TestEditAppointment:

    def test_edit_updates_appointment(self, run_workflow, api_transport, edit_request, services):
        result = run_workflow(lambda wf: wf.edit_appointment(edit_request))

        assert result.ok
        assert result.notification.title == 'Success'
        assert result.notification.description == 'Appointment updated successfully'

        update_path = f"/api/appointments/{edit_request['appointmentId']}"
        updates = api_transport.calls_to('POST', update_path)
        assert len(updates) == 1
        payload = json.loads(updates[0].content)
        assert payload['date'] == '2024-06-01T15:00:00Z'
        assert payload['totalDuration'] == 45
        assert payload['totalPrice'] == 35.0
        # Groomer and services were supplied, so the current record is not fetched
        assert api_transport.calls_to('GET', update_path) == []

        stored = _stored(edit_request['appointmentId'])
        assert stored.status == 'confirmed'
        assert stored.notes == 'Bring the blue harness'
        assert stored.date == datetime.datetime(2024, 6, 1, 15, 0)
        assert stored.end_at == datetime.datetime(2024, 6, 1, 15, 45)
        assert stored.service_ids == [services['bath'].id, services['nails'].id]

    def test_edit_keeps_current_groomer_and_services(
        self, run_workflow, api_transport, sample_appointment, groomers, services
    ):
        request = {
            'appointmentId': sample_appointment.id,
            'status': 'confirmed',
            'appointmentDate': '2024-06-01',
            'appointmentTime': '11:00',
        }

        result = run_workflow(lambda wf: wf.edit_appointment(request))

        assert result.ok
        assert len(api_transport.calls_to('GET', f'/api/appointments/{sample_appointment.id}')) == 1
        stored = _stored(sample_appointment.id)
        assert stored.groomer_id == groomers['alex'].id
        assert stored.service_ids == [services['bath'].id]
        assert stored.date == datetime.datetime(2024, 6, 1, 11, 0)

    @pytest.mark.parametrize('date_str, time_str', [
        ('2024-13-40', '10:00'),
        ('2024-06-01', '25:99'),
    ])
    def test_invalid_date_or_time_makes_no_calls(
        self, run_workflow, api_transport, edit_request, date_str, time_str
    ):
        edit_request.update(appointmentDate=date_str, appointmentTime=time_str)

        result = run_workflow(lambda wf: wf.edit_appointment(edit_request))

        assert not result.ok
        assert isinstance(result.error, ValidationError)
        assert result.notification.description == 'Invalid appointment date or time'
        assert result.notification.variant == 'destructive'
        assert api_transport.calls == []

    def test_time_inside_dst_gap_is_invalid(self, run_workflow, api_transport, edit_request):
        edit_request.update(appointmentDate='2024-03-10', appointmentTime='02:30')

        result = run_workflow(
            lambda wf: wf.edit_appointment(edit_request), timezone='America/New_York'
        )

        assert isinstance(result.error, ValidationError)
        assert api_transport.calls == []

    def test_unknown_status_is_rejected(self, run_workflow, api_transport, edit_request):
        edit_request['status'] = 'done'

        result = run_workflow(lambda wf: wf.edit_appointment(edit_request))

        assert isinstance(result.error, ValidationError)
        assert 'status' in result.notification.description
        assert api_transport.calls == []

    def test_conflicting_slot(
        self, run_workflow, api_transport, edit_request, book, sample_pet, groomers, services
    ):
        other = book(
            sample_pet, groomers['alex'], datetime.datetime(2024, 6, 1, 15, 30), [services['haircut']]
        )

        result = run_workflow(lambda wf: wf.edit_appointment(edit_request))

        assert isinstance(result.error, SchedulingConflictError)
        assert [c['id'] for c in result.error.conflicts] == [other.id]
        assert result.notification.title == 'Time Slot Not Available'
        assert result.notification.description == SchedulingConflictError.default_message
        assert api_transport.calls_to('POST', f"/api/appointments/{edit_request['appointmentId']}") == []
        assert _stored(edit_request['appointmentId']).date == datetime.datetime(2024, 6, 1, 14, 30)

    def test_cancelling_skips_availability_check(
        self, run_workflow, api_transport, edit_request, book, sample_pet, groomers, services
    ):
        book(sample_pet, groomers['alex'], datetime.datetime(2024, 6, 1, 15, 30), [services['haircut']])
        edit_request['status'] = 'cancelled'

        result = run_workflow(lambda wf: wf.edit_appointment(edit_request))

        assert result.ok
        assert api_transport.calls_to('GET', '/api/appointments') == []
        assert _stored(edit_request['appointmentId']).status == 'cancelled'

    def test_repeated_edit_is_idempotent(self, run_workflow, api_transport, edit_request):
        update_path = f"/api/appointments/{edit_request['appointmentId']}"

        first = run_workflow(lambda wf: wf.edit_appointment(edit_request))
        after_first = _stored(edit_request['appointmentId'])
        state = (
            after_first.status,
            after_first.notes,
            after_first.date,
            after_first.end_at,
            after_first.service_ids,
            after_first.total_duration,
            after_first.total_price,
        )
        assert len(api_transport.calls_to('POST', update_path)) == 1

        second = run_workflow(lambda wf: wf.edit_appointment(edit_request))
        after_second = _stored(edit_request['appointmentId'])

        assert first.ok and second.ok
        assert len(api_transport.calls_to('POST', update_path)) == 2
        assert (
            after_second.status,
            after_second.notes,
            after_second.date,
            after_second.end_at,
            after_second.service_ids,
            after_second.total_duration,
            after_second.total_price,
        ) == state

    def test_form_defaults_round_trip(self, run_workflow, sample_appointment):
        async def operation(wf):
            current = await wf.api.get_appointment(sample_appointment.id)
            defaults = edit_form_defaults(current, wf.context.timezone)
            result = await wf.edit_appointment(defaults)
            return defaults, result

        defaults, result = run_workflow(operation)

        assert defaults['appointmentDate'] == '2024-06-01'
        assert defaults['appointmentTime'] == '14:30'
        assert result.ok
        assert _stored(sample_appointment.id).date == datetime.datetime(2024, 6, 1, 14, 30)

    def test_form_defaults_in_business_timezone(self):
        defaults = edit_form_defaults(
            {'id': 4, 'date': '2024-06-01T14:30:00Z', 'status': 'pending', 'services': [1]},
            'America/New_York',
        )

        assert defaults['appointmentDate'] == '2024-06-01'
        assert defaults['appointmentTime'] == '10:30'
        assert defaults['notes'] == ''


def _offline_workflow(routes, token_provider=None):
    """Workflow wired to canned HTTP answers keyed by (method, path)."""
    sent = []

    def handler(request):
        sent.append(request)
        answer = routes.get((request.method, request.url.path))
        if answer is None:
            return httpx.Response(404, json={'message': 'Not found'})
        return answer(request)

    api = GroomingApiClient(
        'http://api.test',
        token_provider or StaticTokenProvider('token'),
        transport=httpx.MockTransport(handler),
    )
    context = WorkflowContext(api=api, current_user=ADMIN_EMAIL)
    return AppointmentWorkflow(context), sent


SERVICE_LIST = [{'id': 1, 'name': 'Full Bath', 'duration': 30, 'price': 25, 'category': 'Service'}]

OFFLINE_EDIT = {
    'appointmentId': 5,
    'status': 'confirmed',
    'appointmentDate': '2024-06-01',
    'appointmentTime': '09:00',
    'groomerId': 2,
    'services': [1],
}


@pytest.mark.workflow
class TestEditFailures:

    def test_store_conflict_becomes_scheduling_conflict(self):
        async def scenario():
            workflow, sent = _offline_workflow({
                ('GET', '/api/services'): lambda r: httpx.Response(200, json=SERVICE_LIST),
                ('GET', '/api/appointments'): lambda r: httpx.Response(200, json=[]),
                ('POST', '/api/appointments/5'): lambda r: httpx.Response(
                    409, json={'status': 'error', 'message': 'Slot taken', 'conflicts': [9]}
                ),
            })
            async with workflow.api:
                return await workflow.edit_appointment(OFFLINE_EDIT)

        result = asyncio.run(scenario())

        assert isinstance(result.error, SchedulingConflictError)
        assert result.error.conflicts == [9]
        assert result.notification.title == 'Time Slot Not Available'

    def test_server_error_uses_generic_message(self):
        async def scenario():
            workflow, sent = _offline_workflow({
                ('GET', '/api/services'): lambda r: httpx.Response(200, json=SERVICE_LIST),
                ('GET', '/api/appointments'): lambda r: httpx.Response(200, json=[]),
                ('POST', '/api/appointments/5'): lambda r: httpx.Response(500, text='oops'),
            })
            async with workflow.api:
                return await workflow.edit_appointment(OFFLINE_EDIT)

        result = asyncio.run(scenario())

        assert not result.ok
        assert result.notification.title == 'Error'
        assert result.notification.description == 'Failed to update appointment'

    def test_server_message_is_shown(self):
        async def scenario():
            workflow, sent = _offline_workflow({
                ('GET', '/api/services'): lambda r: httpx.Response(200, json=SERVICE_LIST),
                ('GET', '/api/appointments'): lambda r: httpx.Response(200, json=[]),
                ('POST', '/api/appointments/5'): lambda r: httpx.Response(
                    404, json={'status': 'error', 'message': 'Appointment not found'}
                ),
            })
            async with workflow.api:
                return await workflow.edit_appointment(OFFLINE_EDIT)

        result = asyncio.run(scenario())

        assert result.notification.description == 'Appointment not found'

    def test_non_json_success_body(self):
        async def scenario():
            workflow, sent = _offline_workflow({
                ('GET', '/api/services'): lambda r: httpx.Response(200, json=SERVICE_LIST),
                ('GET', '/api/appointments'): lambda r: httpx.Response(200, json=[]),
                ('POST', '/api/appointments/5'): lambda r: httpx.Response(
                    200, text='<html>proxy</html>'
                ),
            })
            async with workflow.api:
                return await workflow.edit_appointment(OFFLINE_EDIT)

        result = asyncio.run(scenario())

        assert not result.ok
        assert isinstance(result.error, RemoteFailure)
        assert result.error.status_code == 200
        assert result.notification.description == 'Invalid response from server'
        assert result.notification.variant == 'destructive'

    def test_expired_session(self):
        async def scenario():
            workflow, sent = _offline_workflow({
                ('GET', '/api/services'): lambda r: httpx.Response(
                    401, json={'message': 'Token expired'}
                ),
            })
            async with workflow.api:
                return await workflow.edit_appointment(OFFLINE_EDIT), sent

        result, sent = asyncio.run(scenario())

        assert isinstance(result.error, AuthenticationError)
        assert result.notification.description == 'Failed to update appointment'
        assert len(sent) == 1


@pytest.mark.workflow
class TestCompleteAppointment:

    def test_only_positive_quantities_are_recorded(
        self, run_workflow, api_transport, sample_appointment, services, inventory_items
    ):
        completed = []
        request = {
            'appointmentId': sample_appointment.id,
            'serviceId': services['bath'].id,
            'consumables': {
                inventory_items['shampoo'].id: 2,
                inventory_items['conditioner'].id: 0,
                inventory_items['ear_cleaner'].id: -1,
            },
        }

        result = run_workflow(
            lambda wf: wf.complete_appointment(request, on_complete=lambda: completed.append(True))
        )

        assert result.ok
        assert result.notification.description == 'Appointment completed and inventory updated'
        assert completed == [True]

        calls = api_transport.calls_to('POST', '/api/inventory/usage')
        assert len(calls) == 1
        payload = json.loads(calls[0].content)
        assert payload == {
            'item_id': inventory_items['shampoo'].id,
            'quantity_used': 2.0,
            'service_id': services['bath'].id,
            'appointment_id': sample_appointment.id,
            'used_by': ADMIN_EMAIL,
            'notes': f'Used in appointment {sample_appointment.id}',
        }

        db.session.expire_all()
        assert db.session.get(InventoryItem, inventory_items['shampoo'].id).quantity == 8
        assert db.session.get(InventoryItem, inventory_items['conditioner'].id).quantity == 5

    def test_partial_failure_reports_once_and_keeps_recorded_usage(
        self, run_workflow, api_transport, sample_appointment, services, inventory_items
    ):
        completed = []
        request = {
            'appointmentId': sample_appointment.id,
            'serviceId': services['bath'].id,
            'usedBy': 'groomer@example.com',
            'consumables': {
                inventory_items['shampoo'].id: 2,
                # only 2 ml in stock
                inventory_items['ear_cleaner'].id: 5,
            },
        }

        result = run_workflow(
            lambda wf: wf.complete_appointment(request, on_complete=lambda: completed.append(True))
        )

        assert not result.ok
        assert completed == []
        assert isinstance(result.error, UsageRecordingError)
        assert result.notification.description == 'Failed to record inventory usage'
        assert len(api_transport.calls_to('POST', '/api/inventory/usage')) == 2

        assert len(result.error.recorded) == 1
        assert result.error.recorded[0]['used_by'] == 'groomer@example.com'
        (payload, error), = result.error.failures
        assert payload['item_id'] == inventory_items['ear_cleaner'].id
        assert error.status_code == 409

        db.session.expire_all()
        assert db.session.get(InventoryItem, inventory_items['shampoo'].id).quantity == 8
        assert db.session.get(InventoryItem, inventory_items['ear_cleaner'].id).quantity == 2
        assert db.session.query(InventoryUsage).count() == 1

    def test_non_json_usage_answer_is_a_failure(self):
        completed = []

        def usage(request):
            if json.loads(request.content)['item_id'] == 1:
                return httpx.Response(200, text='ok')
            return httpx.Response(201, json={'id': 1, 'item_id': 2, 'quantity_used': 1.0})

        async def scenario():
            workflow, sent = _offline_workflow({
                ('POST', '/api/inventory/usage'): usage,
            })
            async with workflow.api:
                return await workflow.complete_appointment(
                    {'appointmentId': 5, 'serviceId': 1, 'consumables': {1: 2, 2: 1}},
                    on_complete=lambda: completed.append(True),
                )

        result = asyncio.run(scenario())

        assert not result.ok
        assert completed == []
        assert isinstance(result.error, UsageRecordingError)
        assert result.notification.description == 'Failed to record inventory usage'
        assert len(result.error.recorded) == 1
        (payload, error), = result.error.failures
        assert payload['item_id'] == 1
        assert isinstance(error, RemoteFailure)

    def test_unexpected_error_is_reported_as_failure(self):
        def broken(request):
            raise RuntimeError('transport bug')

        async def scenario():
            workflow, sent = _offline_workflow({('POST', '/api/inventory/usage'): broken})
            async with workflow.api:
                return await workflow.complete_appointment(
                    {'appointmentId': 5, 'serviceId': 1, 'consumables': {1: 2}}
                )

        result = asyncio.run(scenario())

        assert isinstance(result.error, UsageRecordingError)
        (payload, error), = result.error.failures
        assert isinstance(error, RuntimeError)

    def test_async_completion_callback(self, run_workflow, sample_appointment, services, inventory_items):
        completed = []

        async def on_complete():
            completed.append(True)

        request = {
            'appointmentId': sample_appointment.id,
            'serviceId': services['bath'].id,
            'consumables': {inventory_items['conditioner'].id: 1},
        }

        result = run_workflow(lambda wf: wf.complete_appointment(request, on_complete=on_complete))

        assert result.ok
        assert completed == [True]

    def test_nothing_to_record(self, run_workflow, api_transport, sample_appointment, services):
        result = run_workflow(
            lambda wf: wf.complete_appointment(
                {'appointmentId': sample_appointment.id, 'serviceId': services['bath'].id}
            )
        )

        assert result.ok
        assert api_transport.calls_to('POST', '/api/inventory/usage') == []

    def test_invalid_request(self, run_workflow, api_transport):
        result = run_workflow(
            lambda wf: wf.complete_appointment({'consumables': {'1': 'a lot'}})
        )

        assert isinstance(result.error, ValidationError)
        assert api_transport.calls == []

    def test_default_consumables_from_service(self, run_workflow, services, inventory_items):
        defaults = run_workflow(lambda wf: wf.default_consumables(services['bath'].id))

        assert defaults == {inventory_items['shampoo'].id: 2.0}
