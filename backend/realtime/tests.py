from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from django.db import transaction
from django.test import SimpleTestCase, TestCase, TransactionTestCase
from rest_framework.exceptions import ValidationError
from rest_framework_simplejwt.tokens import AccessToken
from unittest.mock import AsyncMock, MagicMock, patch

from accounts.models import User
from drivers.models import DriverProfile
from .consumers import CustomerConsumer, DriverConsumer
from .events import EVENT_SCHEMAS, UnknownEventError, validate_event
from .middleware import JWTOrCookieAuthMiddleware, token_from_scope
from .sessions import InMemorySessionRegistry, get_session_registry
from . import notifications


def with_user(consumer, user):
	app = consumer.as_asgi()

	async def application(scope, receive, send):
		return await app(dict(scope, user=user), receive, send)

	return application


class EventSchemaTests(SimpleTestCase):
	def test_every_client_event_has_a_schema(self):
		for event in (
			'new_booking_request', 'booking_request_created', 'no_drivers_available',
			'booking_accepted', 'booking_no_longer_available', 'booking_rejected',
			'driver_offers_updated', 'fare_offer_accepted', 'fare_offer_rejected',
			'booking_confirmed', 'fare_negotiation_proposed', 'fare_negotiation_accepted',
			'fare_negotiation_rejected', 'fare_negotiation_countered', 'fare_raised',
			'fare_increased', 'booking_cancelled', 'ride_started', 'ride_in_progress',
			'ride_completed', 'survey_request', 'appointment_confirmation_decided',
		):
			self.assertIn(event, EVENT_SCHEMAS)

	def test_unknown_event_is_refused(self):
		with self.assertRaises(UnknownEventError):
			validate_event('driver_teleported', {})

	def test_malformed_payload_is_refused(self):
		with self.assertRaises(ValidationError):
			validate_event('booking_rejected', {'driverId': 4, 'reason': ''})

	def test_payload_is_normalised(self):
		data = validate_event('booking_no_longer_available', {
			'requestId': '12',
			'reason': 'accepted_by_another_driver',
			'message': 'Taken',
		})

		self.assertEqual(data, {
			'requestId': 12,
			'reason': 'accepted_by_another_driver',
			'message': 'Taken',
		})


class PublishTests(SimpleTestCase):
	payload = {'requestId': 3, 'driverId': 9, 'reason': ''}

	def test_publish_sends_validated_event_to_room(self):
		layer = MagicMock()
		layer.group_send = AsyncMock()
		with patch('realtime.notifications.get_channel_layer', return_value=layer):
			sent = notifications.notify_user_event(7, 'booking_rejected', self.payload)

		self.assertTrue(sent)
		layer.group_send.assert_awaited_once_with('user_7', {
			'type': 'marketplace.event',
			'event': 'booking_rejected',
			'payload': self.payload,
		})

	def test_failed_delivery_does_not_raise(self):
		layer = MagicMock()
		layer.group_send = AsyncMock(side_effect=ConnectionError('redis down'))
		with patch('realtime.notifications.get_channel_layer', return_value=layer):
			self.assertFalse(notifications.notify_driver_event(5, 'booking_rejected', self.payload))

	def test_missing_layer_or_recipient(self):
		with patch('realtime.notifications.get_channel_layer', return_value=None):
			self.assertFalse(notifications.publish('driver_5', 'booking_rejected', self.payload))
		self.assertFalse(notifications.notify_driver_event(None, 'booking_rejected', self.payload))

	def test_broadcast_builds_payload_per_driver(self):
		with patch('realtime.notifications.publish', return_value=True) as publish:
			sent = notifications.broadcast_to_drivers(
				[1, 2], 'booking_rejected', lambda driver_id: dict(self.payload, driverId=driver_id)
			)

		self.assertEqual(sent, 2)
		self.assertEqual(publish.call_args_list[1].args[0], 'driver_2')
		self.assertEqual(publish.call_args_list[1].args[2]['driverId'], 2)


class CommitBoundPublishTests(TestCase):
	payload = {'requestId': 3, 'driverId': 9, 'reason': ''}

	def setUp(self):
		self.layer = MagicMock()
		self.layer.group_send = AsyncMock()
		layer = patch('realtime.notifications.get_channel_layer', return_value=self.layer)
		layer.start()
		self.addCleanup(layer.stop)

	def test_send_waits_for_commit(self):
		with self.captureOnCommitCallbacks(execute=True) as callbacks:
			with transaction.atomic():
				self.assertTrue(notifications.notify_user_event(7, 'booking_rejected', self.payload))
				self.layer.group_send.assert_not_awaited()

		self.assertEqual(len(callbacks), 1)
		self.layer.group_send.assert_awaited_once()

	def test_rolled_back_work_sends_nothing(self):
		with self.captureOnCommitCallbacks(execute=True) as callbacks:
			with self.assertRaises(RuntimeError):
				with transaction.atomic():
					notifications.notify_user_event(7, 'booking_rejected', self.payload)
					raise RuntimeError('write failed')

		self.assertEqual(callbacks, [])
		self.layer.group_send.assert_not_awaited()

	def test_invalid_payload_fails_before_commit(self):
		with self.assertRaises(ValidationError):
			notifications.notify_user_event(7, 'booking_rejected', {'driverId': 9})


class SessionRegistryTests(SimpleTestCase):
	def test_driver_stays_connected_until_last_channel_leaves(self):
		registry = InMemorySessionRegistry()
		registry.register(4, 'chan-a')
		registry.register(4, 'chan-b')

		registry.deregister(4, 'chan-a')
		self.assertTrue(registry.is_connected(4))

		registry.deregister(4, 'chan-b')
		self.assertFalse(registry.is_connected(4))
		self.assertEqual(registry.connected_drivers([4, 5]), set())


class TokenFromScopeTests(SimpleTestCase):
	def test_query_string_token(self):
		self.assertEqual(token_from_scope({'query_string': b'token=abc'}), 'abc')

	def test_bearer_header(self):
		scope = {'query_string': b'', 'headers': [(b'authorization', b'Bearer xyz')]}
		self.assertEqual(token_from_scope(scope), 'xyz')

	def test_no_token(self):
		self.assertIsNone(token_from_scope({'query_string': b'', 'headers': []}))


class ConsumerTests(TransactionTestCase):
	def setUp(self):
		get_session_registry().clear()
		self.addCleanup(get_session_registry().clear)
		self.customer = User.objects.create_user(username='customer', password='pass1234', role='user')
		self.driver = User.objects.create_user(username='driver', password='pass1234', role='driver')
		DriverProfile.objects.create(user=self.driver, status='offline')

	async def test_customer_receives_events_on_personal_room(self):
		communicator = WebsocketCommunicator(with_user(CustomerConsumer, self.customer), '/ws/customer/')
		connected, _ = await communicator.connect()
		self.assertTrue(connected)
		hello = await communicator.receive_json_from()
		self.assertEqual(hello['type'], 'connection_established')

		await get_channel_layer().group_send('user_%s' % self.customer.id, {
			'type': 'marketplace.event',
			'event': 'booking_rejected',
			'payload': {'requestId': 3, 'driverId': 9, 'reason': ''},
		})

		message = await communicator.receive_json_from()
		self.assertEqual(message, {'type': 'booking_rejected', 'requestId': 3, 'driverId': 9, 'reason': ''})
		await communicator.disconnect()

	async def test_room_join_requires_matching_identity(self):
		communicator = WebsocketCommunicator(with_user(CustomerConsumer, self.customer), '/ws/customer/')
		await communicator.connect()
		await communicator.receive_json_from()

		await communicator.send_json_to({'type': 'join_customer_room', 'userId': self.customer.id + 100})
		refused = await communicator.receive_json_from()
		self.assertEqual(refused['type'], 'error')

		await communicator.send_json_to({'type': 'join_customer_room', 'userId': self.customer.id})
		joined = await communicator.receive_json_from()
		self.assertEqual(joined, {'type': 'room_joined', 'room': 'user_%s' % self.customer.id})

		await communicator.send_json_to({'type': 'join_driver_room', 'driverId': self.customer.id})
		refused = await communicator.receive_json_from()
		self.assertEqual(refused['type'], 'error')
		await communicator.disconnect()

	async def test_anonymous_connection_is_closed(self):
		communicator = WebsocketCommunicator(CustomerConsumer.as_asgi(), '/ws/customer/')
		connected, code = await communicator.connect()

		self.assertFalse(connected)
		self.assertEqual(code, 4401)

	async def test_driver_socket_holds_the_live_session(self):
		registry = get_session_registry()
		communicator = WebsocketCommunicator(with_user(DriverConsumer, self.driver), '/ws/driver/')
		connected, _ = await communicator.connect()
		self.assertTrue(connected)
		hello = await communicator.receive_json_from()
		self.assertEqual(hello['status'], 'offline')
		self.assertTrue(registry.is_connected(self.driver.id))

		await communicator.send_json_to({'type': 'driver_status_update', 'status': 'online'})
		self.assertEqual((await communicator.receive_json_from())['type'], 'status_updated')

		await communicator.send_json_to({'type': 'driver_location_update', 'latitude': 25.2, 'longitude': 55.27})
		self.assertEqual((await communicator.receive_json_from())['type'], 'location_updated')

		await communicator.send_json_to({'type': 'driver_location_update', 'latitude': 125, 'longitude': 55.27})
		self.assertEqual((await communicator.receive_json_from())['type'], 'error')

		await communicator.disconnect()
		self.assertFalse(registry.is_connected(self.driver.id))

		profile = await DriverProfile.objects.aget(user=self.driver)
		self.assertEqual(profile.status, 'online')
		self.assertTrue(profile.has_location)

	async def test_customer_cannot_use_driver_socket(self):
		communicator = WebsocketCommunicator(with_user(DriverConsumer, self.customer), '/ws/driver/')
		await communicator.connect()

		refused = await communicator.receive_json_from()

		self.assertEqual(refused['type'], 'error')
		self.assertFalse(get_session_registry().is_connected(self.customer.id))

	async def test_token_in_query_string_authenticates(self):
		token = str(AccessToken.for_user(self.customer))
		application = JWTOrCookieAuthMiddleware(CustomerConsumer.as_asgi())
		communicator = WebsocketCommunicator(application, '/ws/customer/?token=%s' % token)

		connected, _ = await communicator.connect()
		self.assertTrue(connected)
		hello = await communicator.receive_json_from()
		self.assertEqual(hello['userId'], self.customer.id)
		await communicator.disconnect()
