from datetime import timedelta
from decimal import Decimal

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate
from unittest.mock import patch

from accounts.models import User
from drivers.models import DriverProfile, Vehicle
from pricing.defaults import default_document
from pricing.models import PricingConfiguration
from realtime.events import validate_event
from realtime.sessions import get_session_registry
from services.booking_management import (
	BookingValidationError,
	FareOutOfBandError,
	NotPermittedError,
	ResendLimitReachedError,
	StateConflictError,
	accept_booking,
	cancel_booking,
	complete_ride,
	create_booking,
	list_live_offers,
	mark_in_progress,
	pending_bookings_for_driver,
	propose_fare,
	raise_fare,
	reject_booking,
	respond_to_driver_offer,
	respond_to_proposal,
	start_ride,
	submit_driver_offer,
)
from services.booking_management import ledger
from services.booking_management.lifecycle import assign_driver
from .models import (
	Booking,
	DriverFareOffer,
	FareIncrease,
	FareNegotiationEntry,
	ImmutableLedgerError,
	MatchingDispatch,
	RejectedDriver,
)
from . import views

PICKUP = (25.2048, 55.2708)
DROPOFF = (25.2148, 55.2708)


class EventCapture:
	"""Stands in for realtime.notifications.publish; schema-checks every event."""

	def __init__(self):
		self.sent = []

	def __call__(self, room, event, payload):
		self.sent.append((room, event, validate_event(event, payload)))
		return True

	def events(self, room):
		return [event for sent_room, event, _ in self.sent if sent_room == room]

	def payloads(self, event):
		return [payload for _, sent_event, payload in self.sent if sent_event == event]


def make_driver(username, latitude=25.2050, longitude=55.2710, gender='male', connected=True, **profile):
	driver = User.objects.create_user(
		username=username,
		password='driver1234',
		role='driver',
		gender=gender,
		kyc_level=2,
		kyc_status='approved',
	)
	DriverProfile.objects.create(
		user=driver,
		status='online',
		current_latitude=latitude,
		current_longitude=longitude,
		**profile
	)
	Vehicle.objects.create(
		driver=driver,
		service_type='car cab',
		vehicle_type='economy',
		plate_number='DXB-%s' % username,
		status='approved',
	)
	if connected:
		get_session_registry().register(driver.id, 'chan-%s' % driver.id)
	return driver


class BookingTestCase(TestCase):
	def setUp(self):
		get_session_registry().clear()
		self.addCleanup(get_session_registry().clear)

		PricingConfiguration.objects.create(name='default', document=default_document(), is_active=True)

		self.customer = User.objects.create_user(
			username='customer',
			password='pass1234',
			role='user',
			phone_number='0500000000'
		)
		self.driver_one = make_driver('driver_one')
		self.driver_two = make_driver('driver_two', latitude=25.2060, longitude=55.2720)

		self.capture = EventCapture()
		publisher = patch('realtime.notifications.publish', new=self.capture)
		publisher.start()
		self.addCleanup(publisher.stop)

		daytime = patch('services.booking_management.lifecycle.is_night_time', return_value=False)
		daytime.start()
		self.addCleanup(daytime.stop)

	def book(self, **overrides):
		params = dict(
			pickup_latitude=PICKUP[0],
			pickup_longitude=PICKUP[1],
			dropoff_latitude=DROPOFF[0],
			dropoff_longitude=DROPOFF[1],
			service_type='car cab',
			vehicle_type='economy',
			pickup_address='Downtown',
			dropoff_address='Business Bay',
		)
		params.update(overrides)
		return create_booking(self.customer, **params)

	def pending_booking(self, fare=None):
		booking = self.book().booking
		if fare is not None:
			Booking.objects.filter(pk=booking.pk).update(offered_fare=fare, fare=fare)
			booking.refresh_from_db()
		return booking

	def accepted_booking(self):
		booking = self.pending_booking()
		return accept_booking(self.driver_one, booking.id).booking


class BookingCreationTests(BookingTestCase):
	def test_create_booking_prices_trip_and_notifies_candidates(self):
		result = self.book()
		booking = result.booking

		self.assertTrue(result.success)
		self.assertEqual(booking.status, 'pending')
		self.assertEqual(booking.fare, Decimal('52.50'))
		self.assertEqual(booking.fare_breakdown['vatAmount'], 2.5)
		self.assertEqual(booking.matching_window, 1)
		self.assertEqual(result.extra['drivers_found'], 2)
		self.assertEqual(MatchingDispatch.objects.filter(booking=booking).count(), 2)

		self.assertIn('new_booking_request', self.capture.events('driver_%s' % self.driver_one.id))
		self.assertIn('new_booking_request', self.capture.events('driver_%s' % self.driver_two.id))
		self.assertIn('booking_request_created', self.capture.events('user_%s' % self.customer.id))

		request_payload = self.capture.payloads('new_booking_request')[0]
		self.assertEqual(request_payload['requestId'], booking.id)
		self.assertEqual(request_payload['from']['coordinates'], [PICKUP[1], PICKUP[0]])
		self.assertEqual(request_payload['distanceInMeters'], int(booking.distance_km * 1000))
		self.assertEqual(request_payload['user']['id'], self.customer.id)
		self.assertEqual(request_payload['user']['username'], 'customer')
		self.assertEqual(request_payload['user']['phoneNumber'], '0500000000')

	def test_no_live_drivers_reports_no_drivers_without_opening_window(self):
		get_session_registry().clear()

		result = self.book()

		self.assertFalse(result.success)
		self.assertEqual(result.error_code, 'no_drivers_available')
		self.assertEqual(result.booking.status, 'pending')
		self.assertEqual(result.booking.matching_window, 0)
		self.assertFalse(MatchingDispatch.objects.exists())

		payload = self.capture.payloads('no_drivers_available')[0]
		self.assertTrue(payload['canRaiseFare'])
		self.assertEqual(payload['maxAllowedFare'], 78.75)

	def test_vehicle_from_another_service_is_rejected(self):
		with self.assertRaises(BookingValidationError) as ctx:
			self.book(vehicle_type='flatbed towing')
		self.assertEqual(ctx.exception.code, 'invalid_service_combination')
		self.assertFalse(Booking.objects.exists())

	def test_offered_fare_outside_band_reports_limits(self):
		with self.assertRaises(FareOutOfBandError) as ctx:
			self.book(offered_fare=Decimal('60'))
		self.assertEqual(ctx.exception.extra, {'minimum': 50.93, 'maximum': 54.08})

	def test_second_active_booking_is_refused(self):
		self.book()
		with self.assertRaises(StateConflictError) as ctx:
			self.book()
		self.assertEqual(ctx.exception.code, 'active_booking_exists')

	def test_create_view_returns_created_booking(self):
		factory = APIRequestFactory()
		request = factory.post('/api/bookings/', {
			'pickup_latitude': '25.204800',
			'pickup_longitude': '55.270800',
			'dropoff_latitude': '25.214800',
			'dropoff_longitude': '55.270800',
			'service_type': 'car cab',
			'vehicle_type': 'economy',
		}, format='json')
		force_authenticate(request, user=self.customer)
		response = views.create_booking(request)

		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['drivers_found'], 2)
		self.assertEqual(response.data['booking']['status'], 'pending')


class AcceptanceTests(BookingTestCase):
	def test_only_one_driver_wins_a_pending_booking(self):
		booking = self.pending_booking()

		result = accept_booking(self.driver_one, booking.id)
		self.assertTrue(result.success)

		with self.assertRaises(StateConflictError) as ctx:
			accept_booking(self.driver_two, booking.id)
		self.assertEqual(ctx.exception.code, 'booking_no_longer_available')

		booking.refresh_from_db()
		self.assertEqual(booking.status, 'accepted')
		self.assertEqual(booking.driver, self.driver_one)
		self.assertEqual(DriverProfile.objects.get(user=self.driver_one).status, 'busy')
		self.assertIn('booking_accepted', self.capture.events('user_%s' % self.customer.id))
		self.assertIn('booking_no_longer_available', self.capture.events('driver_%s' % self.driver_two.id))

	def test_concurrent_accepts_from_a_stale_read_have_one_winner(self):
		booking = self.pending_booking()
		stale = Booking.objects.get(pk=booking.pk)

		winner = assign_driver(Booking.objects.get(pk=booking.pk), self.driver_one)

		# driver_two read the booking while it was still pending
		with patch('services.booking_management.lifecycle.load_booking', return_value=stale):
			with self.assertRaises(StateConflictError) as ctx:
				accept_booking(self.driver_two, booking.id)
		self.assertEqual(ctx.exception.code, 'booking_no_longer_available')

		booking.refresh_from_db()
		self.assertEqual(winner.driver, self.driver_one)
		self.assertEqual(booking.driver, self.driver_one)
		self.assertEqual(booking.version, stale.version + 1)
		self.assertEqual(DriverProfile.objects.get(user=self.driver_two).status, 'online')

	def test_second_assignment_of_the_same_snapshot_is_refused(self):
		booking = self.pending_booking()
		first = Booking.objects.get(pk=booking.pk)
		second = Booking.objects.get(pk=booking.pk)

		assign_driver(first, self.driver_two)
		with self.assertRaises(StateConflictError) as ctx:
			assign_driver(second, self.driver_one)

		self.assertEqual(ctx.exception.code, 'booking_no_longer_available')
		self.assertEqual(Booking.objects.get(pk=booking.pk).driver, self.driver_two)
		self.assertEqual(second.status, 'pending')

	def test_losing_driver_gets_conflict_over_http(self):
		booking = self.pending_booking()
		accept_booking(self.driver_one, booking.id)

		factory = APIRequestFactory()
		request = factory.post('/api/bookings/%d/accept/' % booking.id)
		force_authenticate(request, user=self.driver_two)
		response = views.accept_booking(request, booking_id=booking.id)

		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['error'], 'booking_no_longer_available')

	def test_customer_cannot_accept(self):
		booking = self.pending_booking()
		with self.assertRaises(NotPermittedError):
			accept_booking(self.customer, booking.id)

	def test_reject_is_idempotent_and_driver_is_never_offered_again(self):
		booking = self.pending_booking()

		first = reject_booking(self.driver_one, booking.id, 'Too far')
		second = reject_booking(self.driver_one, booking.id, 'Too far')

		self.assertFalse(first.extra['already_rejected'])
		self.assertTrue(second.extra['already_rejected'])
		self.assertEqual(RejectedDriver.objects.filter(booking=booking).count(), 1)
		self.assertEqual(self.capture.events('user_%s' % self.customer.id).count('booking_rejected'), 1)

		for new_fare in ('60', '70'):
			raise_fare(self.customer, booking.id, Decimal(new_fare))

		self.assertNotIn('fare_increased', self.capture.events('driver_%s' % self.driver_one.id))
		self.assertEqual(self.capture.events('driver_%s' % self.driver_two.id).count('fare_increased'), 2)
		self.assertEqual(self.capture.payloads('fare_increased')[0]['user']['id'], self.customer.id)
		self.assertFalse(
			MatchingDispatch.objects.filter(booking=booking, driver=self.driver_one, window__gt=1).exists()
		)
		self.assertEqual(pending_bookings_for_driver(self.driver_one), [])

	def test_pending_bookings_visible_to_nearby_driver(self):
		booking = self.pending_booking()

		visible = pending_bookings_for_driver(self.driver_two)

		self.assertEqual([b.id for b, _ in visible], [booking.id])
		self.assertLess(visible[0][1], 1)


class FareEscalationTests(BookingTestCase):
	def test_raise_must_be_higher_and_within_cap(self):
		booking = self.pending_booking()

		with self.assertRaises(FareOutOfBandError):
			raise_fare(self.customer, booking.id, Decimal('52.50'))
		with self.assertRaises(FareOutOfBandError) as ctx:
			raise_fare(self.customer, booking.id, Decimal('78.76'))
		self.assertEqual(ctx.exception.extra['maximum'], 78.75)

		result = raise_fare(self.customer, booking.id, Decimal('78.75'))
		booking.refresh_from_db()

		self.assertTrue(result.success)
		self.assertEqual(booking.fare, Decimal('78.75'))
		self.assertEqual(booking.raised_fare, Decimal('78.75'))
		self.assertEqual(booking.resend_attempts, 1)
		self.assertEqual(booking.matching_window, 2)
		self.assertEqual(FareIncrease.objects.get(booking=booking).original_fare, Decimal('52.50'))
		self.assertIn('fare_raised', self.capture.events('user_%s' % self.customer.id))

	def test_resend_bound_after_max_attempts(self):
		booking = self.pending_booking()
		for new_fare in ('60', '70', '80'):
			raise_fare(self.customer, booking.id, Decimal(new_fare))

		with self.assertRaises(ResendLimitReachedError) as ctx:
			raise_fare(self.customer, booking.id, Decimal('90'))

		self.assertEqual(ctx.exception.code, 'max_resend_attempts_reached')
		booking.refresh_from_db()
		self.assertEqual(booking.resend_attempts, 3)
		self.assertEqual(booking.fare, Decimal('80.00'))

	def test_raise_at_attempt_limit_is_rejected_and_booking_stays_pending(self):
		booking = self.pending_booking()
		Booking.objects.filter(pk=booking.pk).update(resend_attempts=3, max_resend_attempts=3)

		with self.assertRaises(ResendLimitReachedError) as ctx:
			raise_fare(self.customer, booking.id, Decimal('60'))

		self.assertEqual(ctx.exception.message, 'Maximum resend attempts reached')
		booking.refresh_from_db()
		self.assertEqual(booking.status, 'pending')

	def test_last_raise_without_drivers_is_terminal(self):
		booking = self.pending_booking()
		Booking.objects.filter(pk=booking.pk).update(resend_attempts=2)
		get_session_registry().clear()

		result = raise_fare(self.customer, booking.id, Decimal('60'))

		self.assertFalse(result.success)
		self.assertEqual(result.error_code, 'no_drivers_available')
		self.assertFalse(result.extra['can_raise_fare'])
		payload = self.capture.payloads('no_drivers_available')[-1]
		self.assertFalse(payload['canRaiseFare'])
		self.assertIsNone(payload['maxAllowedFare'])
		self.assertEqual(Booking.objects.get(pk=booking.pk).status, 'pending')


class DriverOfferTests(BookingTestCase):
	def test_offer_band_edges(self):
		booking = self.pending_booking(fare=Decimal('100'))

		result = submit_driver_offer(self.driver_one, booking.id, Decimal('97'))
		self.assertEqual(result.extra['offer'].amount, Decimal('97.00'))

		with self.assertRaises(FareOutOfBandError) as ctx:
			submit_driver_offer(self.driver_two, booking.id, Decimal('96.99'))
		self.assertEqual(ctx.exception.extra, {'minimum': 97.0, 'maximum': 103.0})

		with self.assertRaises(FareOutOfBandError):
			submit_driver_offer(self.driver_two, booking.id, Decimal('103.01'))

		submit_driver_offer(self.driver_two, booking.id, Decimal('103'))
		self.assertEqual(DriverFareOffer.objects.filter(booking=booking, status='pending').count(), 2)

	def test_one_pending_offer_per_driver(self):
		booking = self.pending_booking(fare=Decimal('100'))
		submit_driver_offer(self.driver_one, booking.id, Decimal('101'))

		with self.assertRaises(StateConflictError) as ctx:
			submit_driver_offer(self.driver_one, booking.id, Decimal('102'))
		self.assertEqual(ctx.exception.code, 'offer_already_pending')

	def test_customer_always_sees_every_live_offer(self):
		booking = self.pending_booking(fare=Decimal('100'))
		submit_driver_offer(self.driver_one, booking.id, Decimal('101'))
		submit_driver_offer(self.driver_two, booking.id, Decimal('99'), estimated_arrival_minutes=4)

		latest = self.capture.payloads('driver_offers_updated')[-1]
		self.assertEqual(latest['totalOffers'], 2)
		self.assertEqual([offer['proposedFare'] for offer in latest['offers']], [99.0, 101.0])
		self.assertEqual(
			FareNegotiationEntry.objects.filter(booking=booking, kind='driver_offer').count(), 2
		)

	def test_accepting_an_offer_assigns_driver_at_offered_fare(self):
		booking = self.pending_booking(fare=Decimal('100'))
		offer = submit_driver_offer(self.driver_one, booking.id, Decimal('102')).extra['offer']
		other = submit_driver_offer(self.driver_two, booking.id, Decimal('98')).extra['offer']

		respond_to_driver_offer(self.customer, booking.id, offer.id, 'accept')

		booking.refresh_from_db()
		offer.refresh_from_db()
		other.refresh_from_db()
		self.assertEqual(booking.status, 'accepted')
		self.assertEqual(booking.driver, self.driver_one)
		self.assertEqual(booking.fare, Decimal('102.00'))
		self.assertEqual(offer.status, 'accepted')
		self.assertEqual(other.status, 'rejected')
		self.assertIn('fare_offer_accepted', self.capture.events('driver_%s' % self.driver_one.id))
		self.assertIn('fare_offer_rejected', self.capture.events('driver_%s' % self.driver_two.id))
		self.assertIn('booking_confirmed', self.capture.events('user_%s' % self.customer.id))

	def test_expired_offer_cannot_be_accepted(self):
		booking = self.pending_booking(fare=Decimal('100'))
		offer = submit_driver_offer(self.driver_one, booking.id, Decimal('100')).extra['offer']
		DriverFareOffer.objects.filter(pk=offer.pk).update(expires_at=timezone.now() - timedelta(seconds=1))

		with self.assertRaises(StateConflictError) as ctx:
			respond_to_driver_offer(self.customer, booking.id, offer.id, 'accept')

		self.assertEqual(ctx.exception.code, 'offer_expired')
		self.assertEqual(Booking.objects.get(pk=booking.pk).status, 'pending')
		self.assertEqual(list_live_offers(booking), [])
		offer.refresh_from_db()
		self.assertEqual(offer.status, 'expired')

	def test_offer_lands_after_a_racing_ledger_write(self):
		booking = self.pending_booking(fare=Decimal('100'))
		real_next_sequence = ledger.next_sequence
		raced = []

		def next_sequence_with_rival(target):
			sequence = real_next_sequence(target)
			if not raced:
				raced.append(FareNegotiationEntry.objects.create(
					booking=target,
					sequence=sequence,
					kind='driver_offer',
					offered_by=self.driver_one,
					offered_by_role='driver',
					counterparty=self.customer,
					amount=Decimal('101'),
					reference_fare=Decimal('100'),
				))
			return sequence

		with patch('services.booking_management.ledger.next_sequence', side_effect=next_sequence_with_rival):
			result = submit_driver_offer(self.driver_two, booking.id, Decimal('102'))

		self.assertTrue(result.success)
		mine = FareNegotiationEntry.objects.get(booking=booking, offered_by=self.driver_two)
		self.assertEqual(mine.sequence, raced[0].sequence + 1)

	def test_ledger_gives_up_with_a_conflict_when_always_beaten(self):
		booking = self.pending_booking(fare=Decimal('100'))
		FareNegotiationEntry.objects.create(
			booking=booking,
			sequence=1,
			kind='driver_offer',
			offered_by=self.driver_one,
			offered_by_role='driver',
			counterparty=self.customer,
			amount=Decimal('101'),
			reference_fare=Decimal('100'),
		)

		with patch('services.booking_management.ledger.next_sequence', return_value=1):
			with self.assertRaises(StateConflictError) as ctx:
				submit_driver_offer(self.driver_two, booking.id, Decimal('102'))
		self.assertEqual(ctx.exception.code, 'negotiation_busy')

	def test_expire_command_sweeps_lapsed_offers(self):
		booking = self.pending_booking(fare=Decimal('100'))
		offer = submit_driver_offer(self.driver_one, booking.id, Decimal('100')).extra['offer']
		DriverFareOffer.objects.filter(pk=offer.pk).update(expires_at=timezone.now() - timedelta(minutes=1))

		call_command('expire_fare_offers')

		offer.refresh_from_db()
		self.assertEqual(offer.status, 'expired')
		self.assertEqual(self.capture.payloads('driver_offers_updated')[-1]['totalOffers'], 0)


class NegotiationTests(BookingTestCase):
	def test_agreement_on_blocked_booking_starts_the_ride(self):
		booking = self.accepted_booking()

		entry = propose_fare(self.customer, booking.id, Decimal('54')).extra['entry']
		booking.refresh_from_db()
		self.assertTrue(booking.awaiting_fare_agreement)

		with self.assertRaises(StateConflictError) as ctx:
			start_ride(self.driver_one, booking.id)
		self.assertEqual(ctx.exception.code, 'awaiting_fare_agreement')

		with self.assertRaises(StateConflictError) as ctx:
			propose_fare(self.driver_one, booking.id, Decimal('53'))
		self.assertEqual(ctx.exception.code, 'proposal_pending')

		result = respond_to_proposal(self.driver_one, booking.id, entry.id, 'accept')

		self.assertTrue(result.extra['started'])
		booking.refresh_from_db()
		self.assertEqual(booking.fare, Decimal('54.00'))
		self.assertEqual(booking.status, 'started')
		self.assertFalse(booking.awaiting_fare_agreement)
		self.assertIn('fare_negotiation_accepted', self.capture.events('user_%s' % self.customer.id))
		self.assertIn('ride_started', self.capture.events('driver_%s' % self.driver_one.id))

	def test_rejection_keeps_fare_and_lifts_block(self):
		booking = self.accepted_booking()
		entry = propose_fare(self.driver_one, booking.id, Decimal('54')).extra['entry']

		respond_to_proposal(self.customer, booking.id, entry.id, 'reject')

		booking.refresh_from_db()
		self.assertEqual(booking.fare, Decimal('52.50'))
		self.assertFalse(booking.awaiting_fare_agreement)
		self.assertEqual(start_ride(self.driver_one, booking.id).booking.status, 'started')

	def test_counter_reopens_and_band_stays_on_original_fare(self):
		booking = self.accepted_booking()
		entry = propose_fare(self.customer, booking.id, Decimal('54')).extra['entry']

		counter = respond_to_proposal(self.driver_one, booking.id, entry.id, 'counter', amount=Decimal('51')).extra['entry']
		self.assertEqual(counter.kind, 'counter')
		self.assertEqual(counter.counterparty, self.customer)

		with self.assertRaises(NotPermittedError):
			respond_to_proposal(self.driver_one, booking.id, counter.id, 'accept')

		respond_to_proposal(self.customer, booking.id, counter.id, 'accept')
		booking.refresh_from_db()
		self.assertEqual(booking.fare, Decimal('51.00'))

		# band stays around the first proposal's 52.50, not the agreed 51
		with self.assertRaises(FareOutOfBandError) as ctx:
			propose_fare(self.customer, booking.id, Decimal('54.10'))
		self.assertEqual(ctx.exception.extra['maximum'], 54.08)

		entry = propose_fare(self.customer, booking.id, Decimal('53.90')).extra['entry']
		self.assertEqual(entry.reference_fare, Decimal('52.50'))

	def test_answered_proposal_cannot_be_answered_again(self):
		booking = self.accepted_booking()
		entry = propose_fare(self.customer, booking.id, Decimal('53')).extra['entry']
		respond_to_proposal(self.driver_one, booking.id, entry.id, 'reject')

		with self.assertRaises(StateConflictError) as ctx:
			respond_to_proposal(self.driver_one, booking.id, entry.id, 'accept')
		self.assertEqual(ctx.exception.code, 'proposal_closed')

	def test_stale_version_is_refused(self):
		booking = self.accepted_booking()
		stale_version = booking.version
		entry = propose_fare(self.customer, booking.id, Decimal('53'), expected_version=stale_version).extra['entry']

		with self.assertRaises(StateConflictError) as ctx:
			respond_to_proposal(self.driver_one, booking.id, entry.id, 'accept', expected_version=stale_version)
		self.assertEqual(ctx.exception.code, 'version_conflict')

	def test_expired_proposal_no_longer_blocks_start(self):
		booking = self.accepted_booking()
		with patch('services.booking_management.negotiation.proposal_ttl', return_value=timedelta(seconds=-1)):
			propose_fare(self.customer, booking.id, Decimal('53'))

		result = start_ride(self.driver_one, booking.id)

		self.assertEqual(result.booking.status, 'started')
		self.assertFalse(result.booking.awaiting_fare_agreement)

	def test_driver_proposal_on_pending_booking_assigns_driver_when_accepted(self):
		booking = self.pending_booking()
		entry = propose_fare(self.driver_two, booking.id, Decimal('53.50')).extra['entry']

		with self.assertRaises(NotPermittedError):
			propose_fare(self.customer, booking.id, Decimal('53'))

		respond_to_proposal(self.customer, booking.id, entry.id, 'accept')

		booking.refresh_from_db()
		self.assertEqual(booking.status, 'accepted')
		self.assertEqual(booking.driver, self.driver_two)
		self.assertEqual(booking.fare, Decimal('53.50'))
		self.assertIn('booking_no_longer_available', self.capture.events('driver_%s' % self.driver_one.id))

	def test_acceptance_by_another_driver_closes_open_proposal(self):
		booking = self.pending_booking()
		entry = propose_fare(self.driver_two, booking.id, Decimal('53.50')).extra['entry']

		accept_booking(self.driver_one, booking.id)

		closing = FareNegotiationEntry.objects.filter(booking=booking).last()
		self.assertEqual((closing.kind, closing.responds_to_id), ('reject', entry.id))
		self.assertEqual(closing.counterparty, self.driver_two)
		self.assertIn('fare_negotiation_rejected', self.capture.events('driver_%s' % self.driver_two.id))

		with self.assertRaises(StateConflictError) as ctx:
			respond_to_proposal(self.customer, booking.id, entry.id, 'accept')
		self.assertEqual(ctx.exception.code, 'proposal_closed')

		booking.refresh_from_db()
		self.assertEqual(booking.driver, self.driver_one)
		self.assertEqual(booking.fare, Decimal('52.50'))

		proposal = propose_fare(self.customer, booking.id, Decimal('53')).extra['entry']
		self.assertEqual(proposal.counterparty, self.driver_one)

	def test_proposal_with_unassigned_driver_cannot_set_the_fare(self):
		booking = self.pending_booking()
		entry = propose_fare(self.driver_two, booking.id, Decimal('53.50')).extra['entry']
		# assigned without going through assign_driver, so the proposal is still open
		Booking.objects.filter(pk=booking.pk).update(status='accepted', driver=self.driver_one)

		for action in ('accept', 'counter'):
			with self.assertRaises(StateConflictError) as ctx:
				respond_to_proposal(self.customer, booking.id, entry.id, action, amount=Decimal('53'))
			self.assertEqual(ctx.exception.code, 'proposal_closed')

		self.assertEqual(Booking.objects.get(pk=booking.pk).fare, Decimal('52.50'))
		propose_fare(self.customer, booking.id, Decimal('53'))

	def test_ledger_entries_are_immutable(self):
		booking = self.accepted_booking()
		entry = propose_fare(self.customer, booking.id, Decimal('53')).extra['entry']

		entry.amount = Decimal('1')
		with self.assertRaises(ImmutableLedgerError):
			entry.save()
		with self.assertRaises(ImmutableLedgerError):
			entry.delete()


class RideLifecycleTests(BookingTestCase):
	def test_full_ride_generates_receipt(self):
		booking = self.accepted_booking()
		start_ride(self.driver_one, booking.id)
		mark_in_progress(self.driver_one, booking.id)

		result = complete_ride(self.driver_one, booking.id, waiting_minutes=10)
		receipt = result.extra['receipt']

		self.assertEqual(result.booking.status, 'completed')
		self.assertRegex(receipt.receipt_number, r'^RCPT-\d{14}-%06d$' % booking.id)
		self.assertEqual(receipt.agreed_fare, Decimal('52.50'))
		# 5 billable minutes at 2/min plus 5% VAT
		self.assertEqual(receipt.total_fare, Decimal('63.00'))
		self.assertEqual(receipt.fare_breakdown['waitingCharge'], 10.0)
		self.assertEqual(User.objects.get(pk=self.driver_one.pk).completed_rides, 1)
		self.assertEqual(DriverProfile.objects.get(user=self.driver_one).status, 'online')

		completed = self.capture.payloads('ride_completed')[0]
		self.assertEqual(completed['receiptNumber'], receipt.receipt_number)

	def test_only_assigned_driver_can_start(self):
		booking = self.accepted_booking()
		with self.assertRaises(NotPermittedError):
			start_ride(self.driver_two, booking.id)

	def test_complete_requires_started_ride(self):
		booking = self.accepted_booking()
		with self.assertRaises(StateConflictError):
			complete_ride(self.driver_one, booking.id)

	def test_customer_cancel_after_assignment_is_charged_by_milestone(self):
		booking = self.accepted_booking()

		result = cancel_booking(self.customer, booking.id, 'Changed plans', progress=0.3)

		booking.refresh_from_db()
		self.assertEqual(booking.status, 'cancelled')
		self.assertEqual(booking.cancellation_charge, Decimal('5.00'))
		self.assertEqual(booking.cancelled_by, self.customer)
		self.assertEqual(result.extra['cancellation_charge'], 5.0)
		self.assertIn('booking_cancelled', self.capture.events('driver_%s' % self.driver_one.id))
		self.assertEqual(DriverProfile.objects.get(user=self.driver_one).status, 'online')

	def test_pending_cancel_is_free_and_reaches_notified_drivers(self):
		booking = self.pending_booking()

		cancel_booking(self.customer, booking.id)

		booking.refresh_from_db()
		self.assertEqual(booking.cancellation_charge, Decimal('0'))
		self.assertIn('booking_cancelled', self.capture.events('driver_%s' % self.driver_two.id))

	def test_driver_cancel_is_never_charged(self):
		booking = self.accepted_booking()

		cancel_booking(self.driver_one, booking.id, 'Vehicle issue', driver_arrived=True)

		booking.refresh_from_db()
		self.assertEqual(booking.cancellation_charge, Decimal('0'))
		payload = self.capture.payloads('booking_cancelled')[0]
		self.assertEqual(payload['cancelledBy'], 'driver')

	def test_started_ride_cannot_be_cancelled(self):
		booking = self.accepted_booking()
		start_ride(self.driver_one, booking.id)

		with self.assertRaises(StateConflictError):
			cancel_booking(self.customer, booking.id)

	def test_stranger_cannot_cancel(self):
		booking = self.pending_booking()
		with self.assertRaises(NotPermittedError):
			cancel_booking(self.driver_two, booking.id)
