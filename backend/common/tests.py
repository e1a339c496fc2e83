from django.test import SimpleTestCase
from rest_framework.exceptions import PermissionDenied

from pricing.exceptions import ConfigurationMissing
from services.booking_management.exceptions import (
	BookingNotFoundError,
	FareOutOfBandError,
	NotPermittedError,
	StateConflictError,
)
from .exceptions import api_exception_handler
from .taxonomy import category_for_vehicle, requested_pink_options, validate_service_combination
from .utils import calculate_distance, is_valid_coordinate


class GeoTests(SimpleTestCase):
	def test_same_point_is_zero(self):
		self.assertEqual(calculate_distance(25.2048, 55.2708, 25.2048, 55.2708), 0)

	def test_one_hundredth_degree_of_latitude(self):
		self.assertAlmostEqual(calculate_distance(25.2048, 55.2708, 25.2148, 55.2708), 1.112, places=3)

	def test_dubai_to_abu_dhabi(self):
		distance = calculate_distance(25.2048, 55.2708, 24.4539, 54.3773)
		self.assertTrue(110 < distance < 130)

	def test_accepts_strings_and_decimals(self):
		self.assertAlmostEqual(calculate_distance('25.2048', '55.2708', '25.2148', '55.2708'), 1.112, places=3)

	def test_coordinate_validation(self):
		self.assertTrue(is_valid_coordinate(-90, 180))
		self.assertFalse(is_valid_coordinate(90.1, 0))
		self.assertFalse(is_valid_coordinate(0, -180.5))
		self.assertFalse(is_valid_coordinate(None, 0))
		self.assertFalse(is_valid_coordinate('north', 0))


class TaxonomyTests(SimpleTestCase):
	def test_valid_combinations(self):
		self.assertEqual(validate_service_combination('car cab', 'economy'), [])
		self.assertEqual(validate_service_combination('car cab', 'any'), [])
		self.assertEqual(validate_service_combination('car recovery', 'flatbed towing', 'towing services'), [])

	def test_invalid_combinations(self):
		self.assertEqual(len(validate_service_combination('bike', 'xl')), 1)
		self.assertEqual(len(validate_service_combination('car recovery', 'fuel delivery', 'towing services')), 1)
		self.assertEqual(len(validate_service_combination('car cab', 'economy', 'small mover')), 1)
		self.assertEqual(validate_service_combination('boat'), ["Unknown service type 'boat'"])

	def test_category_lookup(self):
		self.assertEqual(category_for_vehicle('shifting & movers', 'mazda'), 'medium mover')
		self.assertIsNone(category_for_vehicle('car cab', 'economy'))

	def test_pink_options_keep_only_enabled_flags(self):
		options = requested_pink_options({'familyRides': True, 'safeZoneRides': False, 'unknown': True})
		self.assertEqual([option.value for option in options], ['familyRides'])


class ExceptionHandlerTests(SimpleTestCase):
	def handle(self, exc):
		return api_exception_handler(exc, {'view': None})

	def test_service_errors_map_to_status_codes(self):
		self.assertEqual(self.handle(BookingNotFoundError('missing')).status_code, 404)
		self.assertEqual(self.handle(NotPermittedError('nope')).status_code, 403)
		self.assertEqual(self.handle(StateConflictError('taken', code='booking_no_longer_available')).status_code, 409)
		self.assertEqual(self.handle(ConfigurationMissing('no pricing')).status_code, 503)

	def test_band_error_body_carries_limits(self):
		response = self.handle(FareOutOfBandError('Out of range', 97, 103))

		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.data, {
			'error': 'fare_out_of_band',
			'message': 'Out of range',
			'minimum': 97.0,
			'maximum': 103.0,
		})

	def test_drf_errors_keep_default_handling(self):
		self.assertEqual(self.handle(PermissionDenied()).status_code, 403)

	def test_unrelated_errors_are_not_handled(self):
		self.assertIsNone(self.handle(ValueError('boom')))
