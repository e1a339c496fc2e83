from datetime import timedelta
from decimal import Decimal

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate
from unittest.mock import patch

from accounts.models import User
from realtime.events import validate_event
from services.booking_management.exceptions import (
	BookingValidationError,
	NotPermittedError,
	StateConflictError,
)
from .models import Appointment, AppointmentConfirmation, ScheduledReminder
from . import services, tasks, views


class AppointmentTestCase(TestCase):
	def setUp(self):
		self.customer = User.objects.create_user(username='customer', password='pass1234', role='user')
		self.provider = User.objects.create_user(username='workshop', password='pass1234', role='driver')
		self.appointment = Appointment.objects.create(
			customer=self.customer,
			provider=self.provider,
			service_category='workshop',
			scheduled_at=timezone.now(),
		)

		self.sent = []
		patcher = patch('realtime.notifications.publish', new=self.capture)
		patcher.start()
		self.addCleanup(patcher.stop)

	def capture(self, room, event, payload):
		self.sent.append((room, event, validate_event(event, payload)))
		return True

	def events(self, event):
		return [(room, payload) for room, sent_event, payload in self.sent if sent_event == event]

	def complete(self):
		return services.complete_appointment(self.provider, self.appointment.id)

	def answer(self, confirmation, user, answer, rating=4):
		return services.submit_survey(confirmation.id, user, answer, rating=rating)


class CompletionTests(AppointmentTestCase):
	def test_completion_opens_confirmation_and_schedules_reminders(self):
		confirmation = self.complete()

		self.appointment.refresh_from_db()
		self.assertEqual(self.appointment.status, Appointment.STATUS_COMPLETED)
		self.assertEqual(confirmation.status, AppointmentConfirmation.STATUS_PENDING)

		kinds = list(confirmation.reminders.values_list('kind', flat=True))
		self.assertEqual(kinds, [ScheduledReminder.KIND_SURVEY_REQUEST, ScheduledReminder.KIND_FINALISE])
		finalise = confirmation.reminders.get(kind=ScheduledReminder.KIND_FINALISE)
		self.assertEqual(finalise.due_at, confirmation.deadline)
		self.assertAlmostEqual(
			(confirmation.deadline - self.appointment.completed_at).total_seconds(), 24 * 3600, delta=1
		)

	def test_only_the_provider_completes(self):
		with self.assertRaises(NotPermittedError):
			services.complete_appointment(self.customer, self.appointment.id)

	def test_completed_appointment_cannot_be_completed_again(self):
		self.complete()
		with self.assertRaises(StateConflictError):
			self.complete()

	def test_cancelled_appointment_cannot_start(self):
		services.cancel_appointment(self.customer, self.appointment.id)
		with self.assertRaises(StateConflictError):
			services.start_appointment(self.provider, self.appointment.id)


class SurveyDecisionTests(AppointmentTestCase):
	def test_both_confirm_visit_charges_fixed_fee(self):
		confirmation = self.complete()

		self.answer(confirmation, self.customer, 'good', rating=5)
		confirmation = self.answer(confirmation, self.provider, 'bad', rating=2)

		self.assertEqual(confirmation.status, AppointmentConfirmation.STATUS_SUCCESSFUL)
		self.assertEqual(confirmation.fee_charged, Decimal('5.00'))
		decided = self.events('appointment_confirmation_decided')
		self.assertEqual(sorted(room for room, _ in decided), ['driver_%s' % self.provider.id, 'user_%s' % self.customer.id])
		self.assertEqual(decided[0][1]['feeCharged'], 5.0)

	def test_both_deny_visit_is_unsuccessful_without_fee(self):
		confirmation = self.complete()

		self.answer(confirmation, self.customer, 'didnt_visit', rating=None)
		confirmation = self.answer(confirmation, self.provider, 'didnt_meet_yet', rating=None)

		self.assertEqual(confirmation.status, AppointmentConfirmation.STATUS_UNSUCCESSFUL)
		self.assertEqual(confirmation.fee_charged, Decimal('0'))

	def test_conflicting_answers_are_disputed(self):
		confirmation = self.complete()

		self.answer(confirmation, self.customer, 'didnt_visit', rating=None)
		confirmation = self.answer(confirmation, self.provider, 'good')

		self.assertEqual(confirmation.status, AppointmentConfirmation.STATUS_DISPUTED)

	def test_rating_required_when_visit_happened(self):
		confirmation = self.complete()
		with self.assertRaises(BookingValidationError):
			self.answer(confirmation, self.customer, 'good', rating=None)

	def test_answers_are_checked_per_party(self):
		confirmation = self.complete()
		with self.assertRaises(BookingValidationError):
			self.answer(confirmation, self.customer, 'didnt_meet_yet', rating=None)
		with self.assertRaises(BookingValidationError):
			self.answer(confirmation, self.provider, 'didnt_visit', rating=None)

	def test_each_party_answers_once(self):
		confirmation = self.complete()
		self.answer(confirmation, self.customer, 'good')

		with self.assertRaises(StateConflictError) as ctx:
			self.answer(confirmation, self.customer, 'bad')
		self.assertEqual(ctx.exception.code, 'survey_already_submitted')

	def test_stranger_cannot_answer(self):
		confirmation = self.complete()
		stranger = User.objects.create_user(username='stranger', password='pass1234', role='user')

		with self.assertRaises(NotPermittedError):
			self.answer(confirmation, stranger, 'good')

	def test_answers_after_deadline_are_refused(self):
		confirmation = self.complete()
		AppointmentConfirmation.objects.filter(id=confirmation.id).update(deadline=timezone.now() - timedelta(minutes=1))

		with self.assertRaises(StateConflictError) as ctx:
			self.answer(confirmation, self.customer, 'good')
		self.assertEqual(ctx.exception.code, 'survey_closed')


class ReminderSweepTests(AppointmentTestCase):
	def test_survey_request_goes_to_both_parties_once(self):
		confirmation = self.complete()

		self.assertEqual(services.dispatch_due_reminders(), 1)
		self.assertEqual(services.dispatch_due_reminders(), 0)

		requests = self.events('survey_request')
		self.assertEqual(
			sorted((room, payload['surveyType']) for room, payload in requests),
			[('driver_%s' % self.provider.id, 'provider'), ('user_%s' % self.customer.id, 'customer')],
		)
		self.assertEqual(requests[0][1]['confirmationId'], confirmation.id)
		self.assertIsNotNone(confirmation.reminders.get(kind=ScheduledReminder.KIND_SURVEY_REQUEST).sent_at)

	def test_deadline_with_one_positive_answer_is_successful(self):
		confirmation = self.complete()
		self.answer(confirmation, self.customer, 'good')

		delivered = services.dispatch_due_reminders(now=confirmation.deadline + timedelta(seconds=1))

		self.assertEqual(delivered, 2)
		confirmation.refresh_from_db()
		self.assertEqual(confirmation.status, AppointmentConfirmation.STATUS_SUCCESSFUL)
		self.assertEqual(confirmation.fee_charged, Decimal('5.00'))

	def test_deadline_without_answers_expires(self):
		confirmation = self.complete()

		services.dispatch_due_reminders(now=confirmation.deadline + timedelta(seconds=1))

		confirmation.refresh_from_db()
		self.assertEqual(confirmation.status, AppointmentConfirmation.STATUS_EXPIRED)
		self.assertEqual(confirmation.fee_charged, Decimal('0'))
		self.assertEqual(len(self.events('appointment_confirmation_decided')), 2)

	def test_decided_confirmation_is_left_alone_at_deadline(self):
		confirmation = self.complete()
		self.answer(confirmation, self.customer, 'didnt_visit', rating=None)
		self.answer(confirmation, self.provider, 'good')

		services.dispatch_due_reminders(now=confirmation.deadline + timedelta(seconds=1))

		confirmation.refresh_from_db()
		self.assertEqual(confirmation.status, AppointmentConfirmation.STATUS_DISPUTED)

	def test_task_and_command_run_the_sweep(self):
		self.complete()

		self.assertEqual(tasks.dispatch_due_reminders.delay().get(), 1)
		call_command('process_scheduled_reminders')
		self.assertFalse(ScheduledReminder.objects.filter(sent_at__isnull=True, due_at__lte=timezone.now()).exists())


class AppointmentViewTests(AppointmentTestCase):
	def setUp(self):
		super().setUp()
		self.factory = APIRequestFactory()

	def test_customer_books_appointment(self):
		request = self.factory.post('/api/appointments/', {
			'provider_id': self.provider.id,
			'service_category': 'tyre_shop',
			'scheduled_at': (timezone.now() + timedelta(days=1)).isoformat(),
		}, format='json')
		force_authenticate(request, user=self.customer)
		response = views.appointments(request)

		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['service_category'], 'tyre_shop')
		self.assertIsNone(response.data['confirmation'])

	def test_survey_endpoint_reports_decision(self):
		self.complete()
		AppointmentConfirmation.objects.filter(appointment=self.appointment).update(provider_answer='good', provider_rating=4)

		request = self.factory.post('/api/appointments/%s/survey/' % self.appointment.id, {
			'answer': 'good',
			'rating': 5,
		}, format='json')
		force_authenticate(request, user=self.customer)
		response = views.submit_survey(request, appointment_id=self.appointment.id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['confirmation']['status'], 'successful')

	def test_survey_before_completion_is_not_found(self):
		request = self.factory.post('/api/appointments/%s/survey/' % self.appointment.id, {'answer': 'good', 'rating': 5}, format='json')
		force_authenticate(request, user=self.customer)
		response = views.submit_survey(request, appointment_id=self.appointment.id)

		self.assertEqual(response.status_code, 404)

	def test_stranger_gets_forbidden(self):
		stranger = User.objects.create_user(username='stranger', password='pass1234', role='user')
		request = self.factory.get('/api/appointments/%s/' % self.appointment.id)
		force_authenticate(request, user=stranger)
		response = views.appointment_detail(request, appointment_id=self.appointment.id)

		self.assertEqual(response.status_code, 403)
