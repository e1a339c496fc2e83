from decimal import Decimal

from django.core.management import call_command
from django.test import SimpleTestCase, TestCase
from rest_framework.test import APIRequestFactory, force_authenticate
from unittest.mock import patch

from accounts.models import User
from common.taxonomy import RouteType
from .defaults import default_document
from .engine import CancellationRequest, FareModifiers, MovingDetails, compute_fare
from .exceptions import ConfigurationMissing, UnknownServiceError
from .models import PricingConfiguration
from .rules import DEFAULT_RULES, CancellationMilestone, PricingRules
from .services import get_active_rules, get_rules_or_defaults
from . import views


def rules_with(**overrides):
	return PricingRules.from_document(overrides)


def cab(distance, route_type=RouteType.ONE_WAY, rules=DEFAULT_RULES, **modifiers):
	return compute_fare(
		'car cab', 'economy', None, distance,
		route_type=route_type,
		modifiers=FareModifiers(**modifiers),
		rules=rules,
	)


class FareComputationTests(SimpleTestCase):
	def test_short_cab_trip_is_base_fare_plus_vat(self):
		fare = cab(4)

		self.assertEqual(fare.base_fare, Decimal('50.00'))
		self.assertEqual(fare.distance_fare, Decimal('0.00'))
		self.assertEqual(fare.subtotal, Decimal('50.00'))
		self.assertEqual(fare.vat_amount, Decimal('2.50'))
		self.assertEqual(fare.total_fare, Decimal('52.50'))
		self.assertEqual(fare.platform_fee, Decimal('7.50'))

	def test_city_wise_rate_applies_beyond_threshold(self):
		fare = cab(12)

		# (10 - 6) * 7.5 + (12 - 10) * 5
		self.assertEqual(fare.distance_fare, Decimal('40.00'))
		self.assertEqual(fare.subtotal, Decimal('90.00'))
		self.assertEqual(fare.total_fare, Decimal('94.50'))

	def test_fare_never_decreases_with_distance(self):
		totals = [cab(Decimal(tenths) / 10).total_fare for tenths in range(0, 400, 7)]
		self.assertEqual(totals, sorted(totals))

	def test_minimum_fare_floor(self):
		rules = rules_with(serviceTypes={'car cab': {'minimumFare': 60}})
		for distance in (0, 1, 5.9, 6, 7):
			fare = cab(distance, rules=rules)
			self.assertTrue(fare.minimum_fare_applied)
			self.assertEqual(fare.subtotal, Decimal('60.00'))
			self.assertGreaterEqual(fare.total_fare, Decimal('60'))

	def test_night_charge_picks_percentage_when_larger(self):
		# 50 * 0.25 = 12.5 beats the fixed 10
		self.assertEqual(cab(4, is_night=True).night_charge, Decimal('12.50'))

	def test_night_charge_picks_fixed_when_larger(self):
		rules = rules_with(nightCharges={'fixedAmount': 20})
		self.assertEqual(cab(4, rules=rules, is_night=True).night_charge, Decimal('20.00'))

	def test_no_night_charge_without_flag(self):
		self.assertEqual(cab(4).night_charge, Decimal('0.00'))

	def test_round_trip_multiplier_skips_car_recovery(self):
		cab_round_trip = cab(4, route_type=RouteType.TWO_WAY)
		recovery_round_trip = compute_fare(
			'car recovery', 'flatbed towing', None, 4, route_type=RouteType.TWO_WAY, rules=DEFAULT_RULES
		)

		self.assertTrue(cab_round_trip.round_trip_applied)
		self.assertEqual(cab_round_trip.subtotal, Decimal('90.00'))
		self.assertFalse(recovery_round_trip.round_trip_applied)
		self.assertEqual(recovery_round_trip.subtotal, Decimal('50.00'))

	def test_vat_base_excludes_platform_fee(self):
		without_fee = cab(12, rules=rules_with(platformFee={'percentage': 0}))
		with_fee = cab(12, rules=rules_with(platformFee={'percentage': 50}))

		self.assertEqual(without_fee.platform_fee, Decimal('0.00'))
		self.assertEqual(with_fee.platform_fee, Decimal('45.00'))
		self.assertEqual(without_fee.vat_amount, with_fee.vat_amount)
		self.assertEqual(without_fee.total_fare, with_fee.total_fare)

	def test_surge_tiers(self):
		self.assertEqual(cab(4, demand_ratio=1).surge_charge, Decimal('0.00'))
		self.assertEqual(cab(4, demand_ratio=2.5).surge_charge, Decimal('25.00'))
		self.assertEqual(cab(4, demand_ratio=3).surge_multiplier, Decimal('2.0'))

	def test_waiting_charge_after_free_minutes_is_capped(self):
		self.assertEqual(cab(4, waiting_minutes=5).waiting_charge, Decimal('0.00'))
		self.assertEqual(cab(4, waiting_minutes=10).waiting_charge, Decimal('10.00'))
		self.assertEqual(cab(4, waiting_minutes=60).waiting_charge, Decimal('20.00'))

	def test_recovery_helper_and_convenience_fees(self):
		fare = compute_fare(
			'car recovery', 'flatbed towing', None, 4,
			modifiers=FareModifiers(helper_requested=True),
			rules=DEFAULT_RULES,
		)

		self.assertEqual(fare.service_category, 'towing services')
		self.assertEqual(fare.helper_charge, Decimal('30.00'))
		self.assertEqual(fare.convenience_fee, Decimal('100.00'))
		# VAT covers the convenience fee: (50 + 30 + 100) * 5%
		self.assertEqual(fare.vat_amount, Decimal('9.00'))

	def test_convenience_fee_falls_back_to_category(self):
		fare = compute_fare('car recovery', 'on-road winching', None, 4, rules=DEFAULT_RULES)
		self.assertEqual(fare.convenience_fee, Decimal('70.00'))

	def test_recovery_round_trip_bills_overtime_beyond_free_stay(self):
		fare = compute_fare(
			'car recovery', 'flatbed towing', None, 20,
			route_type=RouteType.TWO_WAY,
			modifiers=FareModifiers(waiting_minutes=25),
			rules=DEFAULT_RULES,
		)

		self.assertEqual(fare.free_stay_minutes, Decimal('10.00'))
		self.assertEqual(fare.overtime_charge, Decimal('15.00'))
		self.assertEqual(fare.waiting_charge, Decimal('0.00'))
		self.assertIn('refreshment_recommended', fare.alerts)

	def test_cancellation_charge_only_for_customer(self):
		customer = cab(4, cancellation=CancellationRequest('user', CancellationMilestone.AFTER_ARRIVAL))
		driver = cab(4, cancellation=CancellationRequest('driver', CancellationMilestone.AFTER_ARRIVAL))

		self.assertEqual(customer.cancellation_charge, Decimal('10.00'))
		self.assertEqual(driver.cancellation_charge, Decimal('0.00'))
		self.assertEqual(customer.total_fare - driver.total_fare, Decimal('10.00'))

	def test_cancellation_milestones_from_progress(self):
		self.assertEqual(CancellationMilestone.from_progress(0.1), CancellationMilestone.BEFORE_ARRIVAL)
		self.assertEqual(CancellationMilestone.from_progress(0.3), CancellationMilestone.AFTER_25_PERCENT)
		self.assertEqual(CancellationMilestone.from_progress(0.5), CancellationMilestone.AFTER_50_PERCENT)
		self.assertEqual(CancellationMilestone.from_progress(0.1, True), CancellationMilestone.AFTER_ARRIVAL)

	def test_moving_charges(self):
		moving = MovingDetails.from_payload({
			'items': {'bed': 2, 'sofa': 2},
			'selectedServices': {'loadingUnloading': True},
			'pickupFloor': {'floor': 2, 'accessType': 'stairs'},
			'dropoffFloor': {'floor': 3, 'accessType': 'lift'},
		})
		fare = compute_fare(
			'shifting & movers', 'small van', None, 4,
			modifiers=FareModifiers(moving=moving),
			rules=DEFAULT_RULES,
		)

		# one item over the limit at the average loading rate of 15.5
		self.assertEqual(fare.moving_details['loadingUnloading'], Decimal('35.50'))
		self.assertEqual(fare.moving_details['pickupFloor'], Decimal('52.00'))
		self.assertEqual(fare.moving_details['dropoffFloor'], Decimal('22.00'))
		self.assertEqual(fare.moving_charge, Decimal('109.50'))
		self.assertEqual(fare.subtotal, Decimal('100.00'))

	def test_night_window_wraps_midnight(self):
		night = DEFAULT_RULES.night
		self.assertTrue(night.covers_hour(23))
		self.assertTrue(night.covers_hour(5))
		self.assertFalse(night.covers_hour(6))
		self.assertFalse(night.covers_hour(12))

	def test_unknown_service_type(self):
		with self.assertRaises(UnknownServiceError):
			compute_fare('boat', None, None, 4, rules=DEFAULT_RULES)


class PricingConfigurationTests(TestCase):
	def test_missing_configuration_raises(self):
		with self.assertRaises(ConfigurationMissing):
			get_active_rules()
		self.assertIs(get_rules_or_defaults(), DEFAULT_RULES)

	def test_rules_rebuilt_only_when_configuration_changes(self):
		config = PricingConfiguration.objects.create(document=default_document(), is_active=True)
		first = get_active_rules()
		self.assertIs(get_active_rules(), first)

		config.document = {'vat': {'percentage': 10}}
		config.save()
		self.assertEqual(get_active_rules().vat_percentage, Decimal('10'))

	def test_activate_keeps_single_active_row(self):
		old = PricingConfiguration.objects.create(name='old', is_active=True)
		new = PricingConfiguration.objects.create(name='new')

		new.activate()

		old.refresh_from_db()
		self.assertFalse(old.is_active)
		self.assertEqual(list(PricingConfiguration.objects.filter(is_active=True)), [new])

	def test_seed_pricing_is_repeatable(self):
		call_command('seed_pricing')
		call_command('seed_pricing')

		self.assertEqual(PricingConfiguration.objects.count(), 1)
		self.assertEqual(PricingConfiguration.objects.get().document, default_document())
		self.assertTrue(PricingConfiguration.objects.get().is_active)


class FareEstimateViewTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.customer = User.objects.create_user(username='customer', password='pass1234', role='user')
		self.payload = {
			'pickup_latitude': '25.204800',
			'pickup_longitude': '55.270800',
			'dropoff_latitude': '25.214800',
			'dropoff_longitude': '55.270800',
			'service_type': 'car cab',
			'vehicle_type': 'economy',
		}

	def post(self, payload):
		request = self.factory.post('/api/pricing/estimate/', payload, format='json')
		force_authenticate(request, user=self.customer)
		return views.estimate_fare(request)

	@patch('services.booking_management.lifecycle.is_night_time', return_value=False)
	def test_estimate_returns_breakdown(self, _):
		PricingConfiguration.objects.create(document=default_document(), is_active=True)

		response = self.post(self.payload)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['fare']['totalFare'], 52.5)
		self.assertAlmostEqual(response.data['distance_km'], 1.11, places=2)

	def test_estimate_rejects_vehicle_outside_service(self):
		PricingConfiguration.objects.create(document=default_document(), is_active=True)

		response = self.post(dict(self.payload, vehicle_type='vip'))

		self.assertEqual(response.status_code, 400)
		self.assertIn('vehicle_type', response.data)

	def test_estimate_without_configuration_is_unavailable(self):
		response = self.post(self.payload)

		self.assertEqual(response.status_code, 503)
		self.assertEqual(response.data['error'], 'pricing_configuration_missing')
