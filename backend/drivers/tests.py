from django.test import TestCase
from rest_framework.test import APIRequestFactory, force_authenticate

from accounts.models import User
from common.taxonomy import DriverPreference
from realtime.sessions import InMemorySessionRegistry
from .directory import CandidateQuery, count_available_drivers, find_candidates
from .models import DriverProfile, Vehicle
from . import views

PICKUP = (25.2048, 55.2708)


class DriverDirectoryTests(TestCase):
	def setUp(self):
		self.registry = InMemorySessionRegistry()

	def add_driver(self, username, lat_offset=0.001, gender='male', status='online', connected=True,
			kyc_level=2, vehicle_type='economy', vehicle_status='approved', **profile):
		driver = User.objects.create_user(
			username=username,
			password='driver1234',
			role='driver',
			gender=gender,
			kyc_level=kyc_level,
			kyc_status='approved' if kyc_level >= 2 else 'pending',
		)
		DriverProfile.objects.create(
			user=driver,
			status=status,
			current_latitude=round(PICKUP[0] + lat_offset, 6),
			current_longitude=PICKUP[1],
			**profile
		)
		Vehicle.objects.create(
			driver=driver,
			service_type='car cab',
			vehicle_type=vehicle_type,
			plate_number='P-%s' % username,
			status=vehicle_status,
		)
		if connected:
			self.registry.register(driver.id, 'chan-%s' % username)
		return driver

	def query(self, **overrides):
		params = dict(latitude=PICKUP[0], longitude=PICKUP[1], service_type='car cab', vehicle_type='economy')
		params.update(overrides)
		return find_candidates(CandidateQuery(**params), registry=self.registry)

	def ids(self, candidates):
		return [candidate.driver_id for candidate in candidates]

	def test_nearby_drivers_sorted_nearest_first(self):
		far = self.add_driver('far', lat_offset=0.05)
		near = self.add_driver('near', lat_offset=0.002)

		candidates = self.query()

		self.assertEqual(self.ids(candidates), [near.id, far.id])
		self.assertTrue(all(candidate.connected for candidate in candidates))
		self.assertEqual(candidates[0].vehicle['plateNumber'], 'P-near')

	def test_online_driver_without_live_session_is_skipped(self):
		self.add_driver('ghost', connected=False)
		live = self.add_driver('live')

		self.assertEqual(self.ids(self.query()), [live.id])

	def test_unverified_offline_and_unapproved_drivers_are_skipped(self):
		self.add_driver('offline', status='offline')
		self.add_driver('busy', status='busy')
		self.add_driver('unverified', kyc_level=1)
		self.add_driver('pending_vehicle', vehicle_status='pending')
		ok = self.add_driver('ok')

		self.assertEqual(self.ids(self.query()), [ok.id])

	def test_vehicle_type_must_match_unless_any(self):
		premium = self.add_driver('premium', vehicle_type='premium')
		economy = self.add_driver('economy', lat_offset=0.002)

		self.assertEqual(self.ids(self.query()), [economy.id])
		self.assertEqual(self.ids(self.query(vehicle_type='any')), [premium.id, economy.id])
		self.assertEqual(self.query(service_type='bike'), [])

	def test_rejected_drivers_are_excluded(self):
		first = self.add_driver('first')
		second = self.add_driver('second', lat_offset=0.002)

		self.assertEqual(self.ids(self.query(exclude_driver_ids=[first.id])), [second.id])

	def test_default_radius_and_custom_radius(self):
		# roughly 15 km north of the pickup
		distant = self.add_driver('distant', lat_offset=0.135)

		self.assertEqual(self.query(), [])
		self.assertEqual(self.ids(self.query(radius_km=20)), [distant.id])

	def test_candidate_list_is_capped(self):
		drivers = [self.add_driver('d%s' % i, lat_offset=0.001 * (i + 1)) for i in range(4)]

		candidates = self.query(limit=2)

		self.assertEqual(self.ids(candidates), [drivers[0].id, drivers[1].id])

	def test_pink_captain_requires_every_requested_opt_in(self):
		family_only = self.add_driver(
			'family_only', gender='female', pink_captain_mode=True, accept_family_rides=True
		)
		covered = self.add_driver(
			'covered', lat_offset=0.003, gender='female', pink_captain_mode=True,
			accept_family_rides=True, accept_no_male_companion=True,
		)
		self.add_driver('male', lat_offset=0.002, accept_no_male_companion=True)

		candidates = self.query(
			preference=DriverPreference.PINK_CAPTAIN,
			pink_captain_options={'noMaleCompanion': True},
		)

		self.assertEqual(self.ids(candidates), [covered.id])
		self.assertNotIn(family_only.id, self.ids(candidates))

	def test_pink_captain_needs_the_mode_switched_on(self):
		self.add_driver('not_opted_in', gender='female', accept_family_rides=True)

		candidates = self.query(preference=DriverPreference.PINK_CAPTAIN)

		self.assertEqual(candidates, [])

	def test_pink_captain_searches_wider_radius(self):
		# roughly 33 km away: outside the nearby radius, inside the pink captain one
		captain = self.add_driver('captain', lat_offset=0.3, gender='female', pink_captain_mode=True)

		self.assertEqual(self.ids(self.query(preference=DriverPreference.PINK_CAPTAIN)), [captain.id])

	def test_pinned_driver_skips_availability_checks(self):
		pinned = self.add_driver('pinned', lat_offset=0.5, status='offline', connected=False)
		self.add_driver('other')

		candidates = self.query(preference=DriverPreference.PINNED, pinned_driver_id=pinned.id)

		self.assertEqual(self.ids(candidates), [pinned.id])
		self.assertFalse(candidates[0].connected)

	def test_pinned_driver_who_rejected_is_not_returned(self):
		pinned = self.add_driver('pinned')

		candidates = self.query(
			preference=DriverPreference.PINNED,
			pinned_driver_id=pinned.id,
			exclude_driver_ids=[pinned.id],
		)

		self.assertEqual(candidates, [])

	def test_count_available_drivers(self):
		self.add_driver('one')
		self.add_driver('two', status='offline')

		self.assertEqual(count_available_drivers('car cab'), 1)
		self.assertEqual(count_available_drivers('bike'), 0)


class DriverViewTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.driver = User.objects.create_user(
			username='driver', password='driver1234', role='driver', gender='male'
		)
		self.profile = DriverProfile.objects.create(user=self.driver, status='offline')
		self.customer = User.objects.create_user(username='customer', password='pass1234', role='user')

	def test_customer_cannot_use_driver_endpoints(self):
		request = self.factory.get('/api/driver/status/')
		force_authenticate(request, user=self.customer)
		response = views.DriverStatusView.as_view()(request)

		self.assertEqual(response.status_code, 403)

	def test_status_and_location_updates(self):
		request = self.factory.put('/api/driver/status/', {'status': 'online'}, format='json')
		force_authenticate(request, user=self.driver)
		response = views.DriverStatusView.as_view()(request)
		self.assertEqual(response.status_code, 200)

		request = self.factory.post('/api/driver/location/', {'latitude': '25.2050', 'longitude': '55.2710'}, format='json')
		force_authenticate(request, user=self.driver)
		response = views.DriverLocationUpdateView.as_view()(request)
		self.assertEqual(response.status_code, 200)

		self.profile.refresh_from_db()
		self.assertEqual(self.profile.status, 'online')
		self.assertTrue(self.profile.has_location)

	def test_pink_captain_mode_refused_for_male_driver(self):
		request = self.factory.put('/api/driver/preferences/', {'pink_captain_mode': True}, format='json')
		force_authenticate(request, user=self.driver)
		response = views.DriverRidePreferencesView.as_view()(request)

		self.assertEqual(response.status_code, 400)
		self.profile.refresh_from_db()
		self.assertFalse(self.profile.pink_captain_mode)

	def test_vehicle_registration_checks_taxonomy(self):
		request = self.factory.post('/api/driver/vehicles/', {
			'service_type': 'car recovery',
			'vehicle_type': 'flatbed towing',
			'plate_number': 'TOW-1',
		}, format='json')
		force_authenticate(request, user=self.driver)
		response = views.DriverVehiclesView.as_view()(request)

		self.assertEqual(response.status_code, 201)
		vehicle = Vehicle.objects.get(plate_number='TOW-1')
		self.assertEqual(vehicle.service_category, 'towing services')
		self.assertEqual(vehicle.status, 'pending')

		request = self.factory.post('/api/driver/vehicles/', {
			'service_type': 'bike',
			'vehicle_type': 'flatbed towing',
			'plate_number': 'TOW-2',
		}, format='json')
		force_authenticate(request, user=self.driver)
		response = views.DriverVehiclesView.as_view()(request)

		self.assertEqual(response.status_code, 400)

	def test_offline_driver_sees_no_pending_bookings(self):
		request = self.factory.get('/api/driver/pending-bookings/')
		force_authenticate(request, user=self.driver)
		response = views.PendingBookingsForDriverView.as_view()(request)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['count'], 0)
