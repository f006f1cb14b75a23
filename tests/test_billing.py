import json
import os
import sys
from pathlib import Path
from urllib.parse import parse_qs

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from resell_tracker.core.errors import BillingNotConfigured, ProviderError, WebhookSignatureError
from resell_tracker.services.billing import (
    BillingClient,
    _flatten_form,
    construct_event,
    sign_payload,
)

SECRET = "whsec_test_secret"
NOW = 1_700_000_000


def _payload(event_type="customer.subscription.updated"):
    return json.dumps({"id": "evt_1", "type": event_type, "data": {"object": {}}}).encode()


def test_flatten_form_uses_bracket_nesting():
    pairs = _flatten_form(
        {
            "customer": "cus_1",
            "line_items": [{"price": "price_1", "quantity": 1}],
            "metadata": {"owner_id": "user_1"},
            "subscription_data": {"metadata": {"plan": "MONTHLY"}},
            "email": None,
            "flag": True,
        }
    )
    assert dict(pairs) == {
        "customer": "cus_1",
        "line_items[0][price]": "price_1",
        "line_items[0][quantity]": "1",
        "metadata[owner_id]": "user_1",
        "subscription_data[metadata][plan]": "MONTHLY",
        "flag": "true",
    }


def test_signed_payload_is_accepted():
    payload = _payload()
    header = sign_payload(payload, SECRET, timestamp=NOW)
    event = construct_event(payload, header, SECRET, tolerance=300, now=NOW + 10)
    assert event["id"] == "evt_1"


def test_any_matching_v1_signature_is_enough():
    payload = _payload()
    good = sign_payload(payload, SECRET, timestamp=NOW).split("v1=")[1]
    header = f"t={NOW},v1=deadbeef,v1={good}"
    assert construct_event(payload, header, SECRET, now=NOW)["type"] == "customer.subscription.updated"


@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        "garbage",
        f"t={NOW}",
        "t=notanumber,v1=abc",
        f"t={NOW},v1=0000",
    ],
)
def test_bad_headers_are_rejected(header):
    with pytest.raises(WebhookSignatureError):
        construct_event(_payload(), header, SECRET, now=NOW)


def test_wrong_secret_is_rejected():
    payload = _payload()
    header = sign_payload(payload, "whsec_other", timestamp=NOW)
    with pytest.raises(WebhookSignatureError):
        construct_event(payload, header, SECRET, now=NOW)


def test_tampered_body_is_rejected():
    header = sign_payload(_payload(), SECRET, timestamp=NOW)
    with pytest.raises(WebhookSignatureError):
        construct_event(_payload("invoice.paid"), header, SECRET, now=NOW)


def test_stale_timestamp_is_rejected():
    payload = _payload()
    header = sign_payload(payload, SECRET, timestamp=NOW)
    with pytest.raises(WebhookSignatureError):
        construct_event(payload, header, SECRET, tolerance=300, now=NOW + 301)


def test_missing_secret_is_rejected():
    payload = _payload()
    with pytest.raises(WebhookSignatureError):
        construct_event(payload, sign_payload(payload, SECRET, timestamp=NOW), "", now=NOW)


def test_non_event_body_is_rejected():
    payload = b"[1, 2, 3]"
    with pytest.raises(WebhookSignatureError):
        construct_event(payload, sign_payload(payload, SECRET, timestamp=NOW), SECRET, now=NOW)


def test_checkout_session_request_is_form_encoded():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["auth"] = request.headers["authorization"]
        seen["form"] = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
        return httpx.Response(200, json={"id": "cs_1", "url": "https://checkout.example/cs_1"})

    client = BillingClient(api_key="sk_test", api_base="https://billing.example/v1", transport=httpx.MockTransport(handler))
    session = client.create_checkout_session(
        customer_id="cus_1",
        price_id="price_monthly",
        mode="subscription",
        metadata={"owner_id": "user_1", "plan": "MONTHLY"},
        subscription_metadata={"owner_id": "user_1", "plan": "MONTHLY"},
        success_url="https://app.example/success?session_id={CHECKOUT_SESSION_ID}",
        cancel_url="https://app.example/pricing?cancelled=true",
    )

    assert session["url"] == "https://checkout.example/cs_1"
    assert seen["method"] == "POST"
    assert seen["path"] == "/v1/checkout/sessions"
    assert seen["auth"] == "Bearer sk_test"
    assert seen["form"]["mode"] == "subscription"
    assert seen["form"]["line_items[0][price]"] == "price_monthly"
    assert seen["form"]["subscription_data[metadata][owner_id]"] == "user_1"
    assert seen["form"]["success_url"].endswith("{CHECKOUT_SESSION_ID}")


def test_provider_error_message_is_surfaced():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"message": "No such price: 'price_x'"}})

    client = BillingClient(api_key="sk_test", api_base="https://billing.example/v1", transport=httpx.MockTransport(handler))
    with pytest.raises(ProviderError) as excinfo:
        client.create_billing_portal_session(customer_id="cus_1", return_url="https://app.example/program")
    assert excinfo.value.message == "No such price: 'price_x'"
    assert excinfo.value.details == {"status": 400}


def test_missing_key_raises_before_any_request():
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("should not be called")

    client = BillingClient(api_key="", api_base="https://billing.example/v1", transport=httpx.MockTransport(handler))
    with pytest.raises(BillingNotConfigured):
        client.retrieve_customer("cus_1")
