"""M-Pesa STK push client."""
import logging
import re
from typing import Any, Dict, Optional

import requests
from flask import current_app

from farmstore.exceptions import MpesaError

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r'^(254|0)?[17]\d{8}$')


def validate_phone(phone_number: Optional[str]) -> bool:
    """Accepts 0712345678, 712345678 and 254712345678 (spaces and + ignored)."""
    if not phone_number:
        return False
    cleaned = re.sub(r'\s', '', phone_number)
    if cleaned.startswith('+'):
        cleaned = cleaned[1:]
    return bool(PHONE_PATTERN.match(cleaned))


def format_phone(phone_number: str) -> str:
    """Normalise to the 2547XXXXXXXX form the gateway expects."""
    cleaned = re.sub(r'\s', '', phone_number)
    if cleaned.startswith('+254'):
        cleaned = cleaned[1:]
    if cleaned.startswith('0'):
        cleaned = '254' + cleaned[1:]
    if not cleaned.startswith('254'):
        cleaned = '254' + cleaned
    return cleaned


class MpesaClient:
    """Client for the STK push endpoint that prompts the customer's phone."""

    def __init__(self, api_url: str, api_key: Optional[str] = None, timeout: int = 10,
                 http: Optional[requests.Session] = None):
        if not api_url:
            raise ValueError("MPESA_API_URL is required")
        self.api_url = api_url
        self.timeout = timeout
        self.http = http or requests.Session()
        self.headers = {'Content-Type': 'application/json'}
        if api_key:
            self.headers['Authorization'] = f'Bearer {api_key}'

    @classmethod
    def from_config(cls, config) -> Optional['MpesaClient']:
        """Build a client from app config, or None when M-Pesa is not configured."""
        if not config.get('MPESA_API_URL'):
            return None
        return cls(
            config['MPESA_API_URL'],
            api_key=config.get('MPESA_API_KEY'),
            timeout=config.get('MPESA_TIMEOUT', 10)
        )

    def stk_push(self, order_id: Any, phone_number: str, amount: int) -> Optional[str]:
        """
        Request payment of `amount` KES for `order_id`.

        Returns the gateway's CheckoutRequestID.

        Raises:
            MpesaError: when the gateway is unreachable or rejects the request
        """
        payload = {
            'orderId': str(order_id),
            'phoneNumber': format_phone(phone_number),
            'amount': int(amount),
        }
        logger.info(f"[MPESA] STK push for order {order_id}: {amount}")

        try:
            response = self.http.post(self.api_url, json=payload, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
            data: Dict[str, Any] = response.json()
        except requests.HTTPError as e:
            logger.error(f"[MPESA] Gateway error for order {order_id}: {e.response.text}")
            raise MpesaError('M-Pesa failed') from e
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[MPESA] Request failed for order {order_id}: {e}")
            raise MpesaError('M-Pesa failed') from e

        if not data.get('success'):
            raise MpesaError(data.get('message') or 'M-Pesa failed')

        reference = (data.get('data') or {}).get('CheckoutRequestID')
        logger.info(f"[MPESA] STK push accepted for order {order_id}: {reference}")
        return reference


def init_mpesa(app) -> Optional[MpesaClient]:
    """Build the app's M-Pesa client once; every settlement reuses its HTTP session."""
    client = MpesaClient.from_config(app.config)
    app.extensions['farmstore_mpesa'] = client
    if client is None:
        logger.info("[MPESA] MPESA_API_URL not set, M-Pesa payments disabled")
    return client


def get_mpesa_client() -> Optional[MpesaClient]:
    return current_app.extensions.get('farmstore_mpesa')
