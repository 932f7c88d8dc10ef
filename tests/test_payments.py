from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

import sessions
from errors import DependencyError
from main import app
from payments import PaymentGateway, get_payment_gateway, to_minor_units


@pytest.mark.parametrize("amount, cents", [(20, 2000), (19.99, 1999), (0.1, 10)])
def test_to_minor_units(amount, cents):
    assert to_minor_units(amount) == cents


def test_create_intent_sends_minor_units_and_metadata():
    gateway = PaymentGateway(api_key="sk_test_123", currency="usd")
    fake_intent = SimpleNamespace(id="pi_1", client_secret="pi_1_secret")
    with patch("stripe.PaymentIntent.create", return_value=fake_intent) as create:
        secret = gateway.create_intent(19.99, "abc")

    assert secret == "pi_1_secret"
    create.assert_called_once_with(
        amount=1999, currency="usd", metadata={"sessionId": "abc"}, api_key="sk_test_123"
    )


def test_create_intent_without_key():
    with pytest.raises(DependencyError):
        PaymentGateway(api_key="", currency="usd").create_intent(10, "abc")


def test_create_intent_stripe_failure():
    gateway = PaymentGateway(api_key="sk_test_123")
    with patch("stripe.PaymentIntent.create", side_effect=stripe.StripeError("card network down")):
        with pytest.raises(DependencyError) as exc:
            gateway.create_intent(10, "abc")
    assert exc.value.message == "Error creating PaymentIntent."


def test_retrieve_intent():
    gateway = PaymentGateway(api_key="sk_test_123")
    fake_intent = SimpleNamespace(id="pi_1", status="succeeded", amount=2000, metadata={"sessionId": "abc"})
    with patch("stripe.PaymentIntent.retrieve", return_value=fake_intent) as retrieve:
        result = gateway.retrieve_intent("pi_1")

    retrieve.assert_called_once_with("pi_1", api_key="sk_test_123")
    assert (result.status, result.session_id, result.amount) == ("succeeded", "abc", 2000)


def test_retrieve_intent_without_metadata():
    gateway = PaymentGateway(api_key="sk_test_123")
    fake_intent = SimpleNamespace(id="pi_1", status="succeeded", amount=2000, metadata={})
    with patch("stripe.PaymentIntent.retrieve", return_value=fake_intent):
        assert gateway.retrieve_intent("pi_1").session_id is None


def test_retrieve_unknown_intent():
    gateway = PaymentGateway(api_key="sk_test_123")
    error = stripe.InvalidRequestError("No such payment_intent: 'pi_x'", "intent")
    with patch("stripe.PaymentIntent.retrieve", side_effect=error):
        assert gateway.retrieve_intent("pi_x").status == "unknown"


def test_unconfigured_processor_returns_500(client, db, make_session):
    session_id = make_session()
    sessions.approve_session(db, session_id, True, 10)
    app.dependency_overrides[get_payment_gateway] = lambda: PaymentGateway(api_key="")
    resp = client.post("/create-payment-intent", json={"amount": 10, "sessionId": session_id})
    assert resp.status_code == 500
    assert resp.json() == {
        "success": False,
        "message": "Payment processor is not configured",
        "code": "DependencyError",
    }
