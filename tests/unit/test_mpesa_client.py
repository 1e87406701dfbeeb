"""
Unit tests for the M-Pesa client.
"""

import pytest
import requests
from flask import Flask

from farmstore.exceptions import MpesaError
from farmstore.services.mpesa_client import (
    MpesaClient, format_phone, get_mpesa_client, init_mpesa, validate_phone
)


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code
        self.text = str(payload)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(response=self)

    def json(self):
        return self.payload


class FakeHttp:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({'url': url, 'json': json, 'headers': headers, 'timeout': timeout})
        if self.error:
            raise self.error
        return self.response


@pytest.mark.parametrize('phone', ['0712345678', '254712345678', '712345678', '+254712345678',
                                   '0112345678', '0712 345 678'])
def test_valid_phones(phone):
    assert validate_phone(phone) is True


@pytest.mark.parametrize('phone', ['', None, '0812345678', '07123456', '2547123456789', 'abc'])
def test_invalid_phones(phone):
    assert validate_phone(phone) is False


def test_format_phone():
    assert format_phone('0712345678') == '254712345678'
    assert format_phone('+254712345678') == '254712345678'
    assert format_phone('712 345 678') == '254712345678'
    assert format_phone('254712345678') == '254712345678'


def test_stk_push_returns_reference():
    http = FakeHttp(FakeResponse({'success': True, 'data': {'CheckoutRequestID': 'ws_CO_123'}}))
    client = MpesaClient('https://pay.example/mpesa', api_key='secret', timeout=5, http=http)

    reference = client.stk_push(42, '0712345678', 5850)

    assert reference == 'ws_CO_123'
    call = http.calls[0]
    assert call['json'] == {'orderId': '42', 'phoneNumber': '254712345678', 'amount': 5850}
    assert call['headers']['Authorization'] == 'Bearer secret'
    assert call['timeout'] == 5


def test_stk_push_rejected():
    http = FakeHttp(FakeResponse({'success': False, 'message': 'Insufficient funds'}))
    client = MpesaClient('https://pay.example/mpesa', http=http)
    with pytest.raises(MpesaError, match='Insufficient funds'):
        client.stk_push(1, '0712345678', 100)


def test_stk_push_http_error():
    http = FakeHttp(FakeResponse({'error': 'boom'}, status_code=500))
    client = MpesaClient('https://pay.example/mpesa', http=http)
    with pytest.raises(MpesaError):
        client.stk_push(1, '0712345678', 100)


def test_stk_push_network_error():
    http = FakeHttp(error=requests.ConnectionError('down'))
    client = MpesaClient('https://pay.example/mpesa', http=http)
    with pytest.raises(MpesaError):
        client.stk_push(1, '0712345678', 100)


def test_from_config_without_url_is_none():
    assert MpesaClient.from_config({'MPESA_API_URL': ''}) is None
    assert isinstance(MpesaClient.from_config({'MPESA_API_URL': 'https://x'}), MpesaClient)


def test_init_mpesa_builds_one_client_per_app():
    app = Flask(__name__)
    app.config.update(MPESA_API_URL='https://gateway.test/stk', MPESA_API_KEY='k', MPESA_TIMEOUT=4)

    client = init_mpesa(app)

    assert isinstance(client, MpesaClient)
    assert client.timeout == 4
    with app.app_context():
        first = get_mpesa_client()
    with app.app_context():
        second = get_mpesa_client()
    assert first is second is client


def test_init_mpesa_without_gateway_url():
    app = Flask(__name__)
    app.config['MPESA_API_URL'] = ''

    assert init_mpesa(app) is None
    with app.app_context():
        assert get_mpesa_client() is None
