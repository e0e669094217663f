from paygate.services.reconciler import extract_event


def test_extract_event_reads_nested_fields():
    event = extract_event(
        {
            "type": "payment_success",
            "data": {
                "payment": {"id": "pay_9", "value": "11.00"},
                "customer": {"id": "cus_9"},
                "items": [{"offer": {"id": "prod-monthly"}, "customFields": '{"userId": "42"}'}],
            },
        }
    )
    assert event.type == "payment_success"
    assert event.payment_id == "pay_9"
    assert event.customer_id == "cus_9"
    assert event.product_id == "prod-monthly"
    assert event.custom_data == {"userId": "42"}
    assert event.amount == "11.00"


def test_extract_event_fallbacks():
    event = extract_event(
        {
            "type": "payment_failed",
            "data": {
                "payment_id": "pay_flat",
                "customer_id": "cus_flat",
                "items": [{"productId": "prod-2weeks"}],
                "payment": {"customFields": {"intentId": "i-1"}, "failureReason": "expired_card"},
            },
        }
    )
    assert event.payment_id == "pay_flat"
    assert event.customer_id == "cus_flat"
    assert event.product_id == "prod-2weeks"
    assert event.custom_data == {"intentId": "i-1"}
    assert event.reason == "expired_card"


def test_extract_event_tolerates_garbage_custom_data():
    event = extract_event({"type": "payment_success", "data": {"items": [{"customFields": "{not json"}]}})
    assert event.custom_data == {}
    assert event.product_id is None
    assert event.payment_id is None
