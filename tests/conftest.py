"""Shared fixtures."""
import pytest


class FakeClock:
    """Settable wall clock (epoch seconds)."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def order_payload():
    return {
        "orderId": "O1",
        "productCodes": ["P1"],
        "requestId": "R1",
        "email": "a@x.com",
    }


@pytest.fixture
def product_payload():
    return {
        "requestId": "R2",
        "eventType": "PRODUCT_CREATED",
        "productId": "prod-1",
        "productCode": "P1",
        "productPrice": 19.9,
        "email": "admin@x.com",
    }
