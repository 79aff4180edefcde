"""Payment collection for the fees charged when a booking is requested."""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests

from p2p_rental.errors import PaymentError
from p2p_rental.services.pricing import money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None


class PaymentCollector(ABC):

    @abstractmethod
    def charge(self, amount, payer_id, reference: str) -> PaymentResult:
        """Charge the amount due now; never raises for a declined charge"""


class HttpPaymentCollector(PaymentCollector):
    """Forwards charges to the external payment service"""

    def __init__(self, base_url: str, timeout: float = 10):
        self._base_url = base_url.rstrip('/')
        self._timeout = timeout

    def charge(self, amount, payer_id, reference):
        payload = {
            'amount': str(money(amount)),
            'payer_id': payer_id,
            'reference': reference,
        }
        try:
            response = requests.post(
                f"{self._base_url}/charges",
                json=payload,
                headers={'Content-Type': 'application/json'},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Payment service unreachable: {str(e)}")
            return PaymentResult(False, error='Payment service unavailable')

        if response.status_code not in (200, 201):
            try:
                message = response.json().get('error', response.text)
            except ValueError:
                message = response.text
            logger.error(f"Payment declined for {reference}: {message}")
            return PaymentResult(False, error=message or 'Payment declined')

        data = response.json()
        logger.info(f"Charged {payload['amount']} for {reference}")
        return PaymentResult(True, transaction_id=data.get('transaction_id'))


def collect_or_raise(collector: PaymentCollector, amount, payer_id, reference: str) -> PaymentResult:
    result = collector.charge(amount, payer_id, reference)
    if not result.success:
        raise PaymentError(result.error or 'Payment failed')
    return result
