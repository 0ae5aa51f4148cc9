#!/usr/bin/env python3
"""
Tests for the OpenCage HTTP client (session patched, no network).
"""

import unittest
from unittest.mock import Mock, patch

import requests

from core.exceptions import GeocodingError
from core.geo.opencage_client import OpenCageClient, _is_retryable_error, format_postal_query


def _response(payload=None, status_code=200, json_error=None):
    response = Mock()
    response.status_code = status_code
    if status_code >= 400:
        error = requests.HTTPError(f"{status_code} error")
        error.response = response
        response.raise_for_status.side_effect = error
    else:
        response.raise_for_status.return_value = None
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = payload
    return response


TORONTO_PAYLOAD = {
    'results': [{
        'geometry': {'lat': 43.6426, 'lng': -79.3871},
        'formatted': 'Toronto, ON M5V 2T6, Canada',
        'components': {'country_code': 'ca', 'postcode': 'M5V 2T6', 'city': 'Toronto', 'state': 'Ontario'},
    }]
}


class TestOpenCageClient(unittest.TestCase):

    def setUp(self):
        self.client = OpenCageClient(api_key="test-key", max_attempts=2)
        self.client.session = Mock()

    def test_user_agent_header(self):
        client = OpenCageClient(api_key="k")
        self.assertEqual(client.session.headers['User-Agent'], "CircleMatchingApp/1.0")
        client.close()

    def test_query_sends_country_restricted_request(self):
        self.client.session.get.return_value = _response(TORONTO_PAYLOAD)

        result = self.client.query("M5V2T6", "ca")

        args, kwargs = self.client.session.get.call_args
        self.assertEqual(args[0], "https://api.opencagedata.com/geocode/v1/json")
        self.assertEqual(kwargs['params']['q'], "M5V 2T6")
        self.assertEqual(kwargs['params']['key'], "test-key")
        self.assertEqual(kwargs['params']['countrycode'], "ca")
        self.assertEqual(kwargs['params']['limit'], 1)
        self.assertEqual(kwargs['timeout'], 10.0)

        self.assertEqual(result.lat, 43.6426)
        self.assertEqual(result.lng, -79.3871)
        self.assertEqual(result.city, "Toronto")
        self.assertEqual(result.region, "Ontario")

    @patch("time.sleep")
    def test_timeout_is_retried(self, _sleep):
        self.client.session.get.side_effect = [requests.Timeout("slow"), _response(TORONTO_PAYLOAD)]

        result = self.client.query("M5V2T6", "ca")

        self.assertEqual(self.client.session.get.call_count, 2)
        self.assertEqual(result.lat, 43.6426)

    @patch("time.sleep")
    def test_retries_exhausted_raise_geocoding_error(self, _sleep):
        self.client.session.get.side_effect = requests.ConnectionError("down")

        with self.assertRaises(GeocodingError):
            self.client.query("M5V2T6", "ca")
        self.assertEqual(self.client.session.get.call_count, 2)

    def test_time_budget_caps_request_timeout(self):
        self.client.session.get.return_value = _response(TORONTO_PAYLOAD)

        self.client.query("M5V2T6", "ca", timeout_seconds=2.5)

        _, kwargs = self.client.session.get.call_args
        self.assertLessEqual(kwargs['timeout'], 2.5)
        self.assertGreater(kwargs['timeout'], 0)

    @patch("time.sleep")
    def test_spent_budget_stops_retries(self, _sleep):
        client = OpenCageClient(api_key="test-key", max_attempts=5)
        client.session = Mock()

        with self.assertRaises(GeocodingError):
            client.query("M5V2T6", "ca", timeout_seconds=0)
        client.session.get.assert_not_called()
        _sleep.assert_not_called()

    def test_client_error_not_retried(self):
        self.client.session.get.return_value = _response(status_code=401)

        with self.assertRaises(GeocodingError):
            self.client.query("M5V2T6", "ca")
        self.assertEqual(self.client.session.get.call_count, 1)

    def test_empty_results_raise(self):
        self.client.session.get.return_value = _response({'results': []})

        with self.assertRaises(GeocodingError):
            self.client.query("M5V2T6", "ca")

    def test_missing_geometry_raises(self):
        self.client.session.get.return_value = _response({'results': [{'components': {}}]})

        with self.assertRaises(GeocodingError):
            self.client.query("M5V2T6", "ca")

    def test_non_json_body_raises(self):
        self.client.session.get.return_value = _response(json_error=ValueError("no json"))

        with self.assertRaises(GeocodingError):
            self.client.query("M5V2T6", "ca")

    def test_context_manager_closes_session(self):
        with OpenCageClient(api_key="k") as client:
            client.session = Mock()
            session = client.session
        session.close.assert_called_once()


class TestHelpers(unittest.TestCase):

    def test_format_canadian_code(self):
        self.assertEqual(format_postal_query("M5V2T6", "ca"), "M5V 2T6")
        self.assertEqual(format_postal_query("M5V", "ca"), "M5V")
        self.assertEqual(format_postal_query("10001", "us"), "10001")

    def test_retryable_errors(self):
        self.assertTrue(_is_retryable_error(requests.Timeout()))
        server_error = requests.HTTPError()
        server_error.response = Mock(status_code=503)
        self.assertTrue(_is_retryable_error(server_error))
        client_error = requests.HTTPError()
        client_error.response = Mock(status_code=404)
        self.assertFalse(_is_retryable_error(client_error))
        self.assertFalse(_is_retryable_error(ValueError()))


if __name__ == '__main__':
    unittest.main()
