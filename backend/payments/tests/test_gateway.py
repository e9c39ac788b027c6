import types
from decimal import Decimal

import pytest
import stripe

from payments.exceptions import GatewayUnavailable
from payments.services.gateway import StripeGateway, StubGateway, get_gateway, to_minor_units


class FakeSessions:
    def __init__(self, create=None, retrieve=None):
        self.created = []
        self._create = create
        self._retrieve = retrieve

    def create(self, params):
        self.created.append(params)
        return self._create(params)

    def retrieve(self, session_id):
        return self._retrieve(session_id)


@pytest.fixture
def stripe_settings(settings, monkeypatch):
    settings.STRIPE_USE_STUB = False
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    settings.FRONTEND_URL = "https://app.test"
    settings.PAYMENTS_GATEWAY_TIMEOUT = 10.0
    return settings


@pytest.fixture
def fake_stripe(monkeypatch):
    """Replace the Stripe client classes and record how each client was built."""

    built = []
    sessions = FakeSessions()

    def fake_client(api_key, http_client=None):
        built.append({"api_key": api_key, "http_client": http_client})
        return types.SimpleNamespace(v1=types.SimpleNamespace(checkout=types.SimpleNamespace(sessions=sessions)))

    monkeypatch.setattr(stripe, "StripeClient", fake_client)
    monkeypatch.setattr(stripe, "RequestsClient", lambda timeout: types.SimpleNamespace(timeout=timeout))
    return types.SimpleNamespace(built=built, sessions=sessions)


def test_stub_is_used_without_credentials(settings):
    settings.STRIPE_USE_STUB = False
    settings.STRIPE_SECRET_KEY = ""

    assert isinstance(get_gateway(), StubGateway)


def test_stripe_is_used_when_configured(stripe_settings):
    gateway = get_gateway()

    assert isinstance(gateway, StripeGateway)
    assert gateway.api_key == "sk_test_123"
    assert get_gateway() is gateway


def test_minor_units():
    assert to_minor_units(Decimal("149.99")) == 14999


def test_stripe_checkout_session_carries_reference(stripe_settings, fake_stripe):
    fake_stripe.sessions._create = lambda params: types.SimpleNamespace(
        id="cs_real_123",
        url="https://stripe.test/checkout/cs_real_123",
    )

    intent = StripeGateway("sk_test_123").create_intent(
        reference="pay_abc",
        amount=Decimal("149.99"),
        currency="inr",
        user_details={"email": "swimmer@example.com"},
        timeout=3.0,
    )

    assert intent.gateway_id == "cs_real_123"
    assert intent.payment_url == "https://stripe.test/checkout/cs_real_123"
    [params] = fake_stripe.sessions.created
    assert params["client_reference_id"] == "pay_abc"
    assert params["customer_email"] == "swimmer@example.com"
    assert params["metadata"] == {"reference": "pay_abc"}
    assert params["line_items"][0]["price_data"]["unit_amount"] == 14999
    assert params["success_url"] == "https://app.test/customer/payment?reference=pay_abc"
    [built] = fake_stripe.built
    assert built["api_key"] == "sk_test_123"
    assert built["http_client"].timeout == 3.0


def test_clients_are_kept_per_deadline_without_touching_module_state(stripe_settings, fake_stripe, monkeypatch):
    monkeypatch.setattr(stripe, "api_key", None)
    monkeypatch.setattr(stripe, "default_http_client", None)
    fake_stripe.sessions._create = lambda params: types.SimpleNamespace(id="cs_1", url="https://stripe.test/cs_1")
    gateway = StripeGateway("sk_test_123")
    kwargs = {"reference": "pay_abc", "amount": Decimal("1.00"), "currency": "inr", "user_details": {}}

    gateway.create_intent(**kwargs)
    gateway.create_intent(**kwargs)
    gateway.create_intent(timeout=2.0, **kwargs)

    assert [built["http_client"].timeout for built in fake_stripe.built] == [10.0, 2.0]
    assert stripe.api_key is None
    assert stripe.default_http_client is None
    assert "customer_email" not in fake_stripe.sessions.created[0]


def test_stripe_error_becomes_gateway_unavailable(stripe_settings, fake_stripe):
    def fail(params):
        raise stripe.APIConnectionError("connection reset")

    fake_stripe.sessions._create = fail

    with pytest.raises(GatewayUnavailable) as excinfo:
        StripeGateway("sk_test_123").create_intent(
            reference="pay_abc",
            amount=Decimal("1.00"),
            currency="inr",
            user_details={},
        )

    assert excinfo.value.reference == "pay_abc"
    assert excinfo.value.retryable


@pytest.mark.parametrize(
    "status, payment_status, expected",
    [
        ("complete", "paid", "paid"),
        ("open", "unpaid", "unpaid"),
        ("expired", "unpaid", "expired"),
    ],
)
def test_stripe_verify_reads_session(stripe_settings, fake_stripe, status, payment_status, expected):
    session = types.SimpleNamespace(
        id="cs_real_123",
        status=status,
        payment_status=payment_status,
        payment_intent="pi_123",
    )
    fake_stripe.sessions._retrieve = lambda session_id: session

    result = StripeGateway("sk_test_123").verify("pay_abc", gateway_id="cs_real_123")

    assert result.code == expected
    assert result.payload["payment_intent"] == "pi_123"


def test_stripe_verify_without_session_is_unavailable(stripe_settings):
    with pytest.raises(GatewayUnavailable):
        StripeGateway("sk_test_123").verify("pay_abc", gateway_id="")
