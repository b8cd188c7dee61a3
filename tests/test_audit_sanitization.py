from sqlalchemy import inspect

from fundflow.models.audit import AuditLog
from fundflow.utils.audit import log_audit, sanitize_payload_for_audit


def test_audit_log_masks_sensitive_fields(db_session):
    payload = {
        "phone_number": "+254 712 345 678",
        "email": "sensitive@example.com",
        "donor_address": "0x1234567890abcdef",
        "amount": "50.00",
        "nested": [{"wallet_address": "0xfeedbeef42"}],
    }

    log_audit(
        db_session,
        actor="test",
        action="MASK_TEST",
        entity="DonationTransaction",
        entity_id=1,
        data=payload,
    )
    db_session.commit()

    entry = (
        db_session.query(AuditLog)
        .filter(AuditLog.action == "MASK_TEST")
        .order_by(AuditLog.id.desc())
        .first()
    )
    assert entry is not None
    assert entry.data_json["phone_number"] == "***678"
    assert entry.data_json["email"] == "***@example.com"
    assert entry.data_json["donor_address"] == "***cdef"
    assert entry.data_json["amount"] == "50.00"
    assert entry.data_json["nested"][0]["wallet_address"] == "***ef42"


def test_sanitize_keeps_missing_values_and_short_inputs():
    sanitized = sanitize_payload_for_audit({"email": None, "phone_number": "12", "customer_email": "nobody"})

    assert sanitized == {"email": None, "phone_number": "***", "customer_email": "***"}


def test_audit_trail_is_indexed_for_entity_and_action_lookups(db_session):
    indexes = {index["name"]: index["column_names"] for index in inspect(db_session.get_bind()).get_indexes("audit_logs")}

    assert indexes["ix_audit_logs_entity"] == ["entity", "entity_id"]
    assert indexes["ix_audit_logs_action"] == ["action"]


def test_audit_entry_gets_timestamp_and_readable_repr(db_session):
    entry = AuditLog(actor="validator:7", action="VALIDATION_SUBMITTED", entity="Validation", entity_id=3, data_json={})
    db_session.add(entry)
    db_session.commit()

    assert entry.at is not None
    assert repr(entry) == "<AuditLog VALIDATION_SUBMITTED Validation#3 by validator:7>"
