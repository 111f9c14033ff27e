from __future__ import annotations

import pytest

from relgraph.api.v1.schemas import SourceMetadata
from relgraph.services.ingest.normalize import normalize, normalize_email, normalize_linkedin_url


def test_linkedin_record_maps_known_headers_and_drops_unknown_ones() -> None:
    raw = {
        "Full Name": "Mr. John Smith",
        "Company": "Sequoia Capital LLC",
        "Profile URL": "https://linkedin.com/in/JohnSmith?trk=abc",
        "Email Address": "John@Example.COM",
        "Favorite Color": "blue",
    }

    contact, confidence = normalize(raw, {"type": "linkedin"}, trust_weights={"linkedin": 0.95})

    assert contact.name == "John Smith"
    assert contact.firm == "Sequoia Capital"
    assert contact.linkedin == "https://www.linkedin.com/in/johnsmith/"
    assert contact.email == "john@example.com"
    assert contact.role is None
    assert contact.dropped_fields == ["Favorite Color"]
    assert "blue" not in contact.model_dump_json()
    assert contact.source.type == "linkedin"

    assert confidence["name"] == pytest.approx(0.95)
    assert confidence["firm"] == pytest.approx(0.855)
    assert confidence["role"] == 0.0
    assert confidence["overall"] == pytest.approx(0.9215)
    assert contact.confidence == confidence


def test_sparse_record_never_raises() -> None:
    contact, confidence = normalize({}, SourceMetadata(type="csv"), trust_weights={"csv": 0.8})

    assert contact.name is None
    assert contact.job_history is None
    assert contact.connections is None
    assert confidence["overall"] == 0.0


def test_malformed_email_is_dropped_with_zero_confidence() -> None:
    contact, confidence = normalize(
        {"name": "Ada Lovelace", "email": "not-an-email"},
        {"type": "csv"},
        trust_weights={"csv": 0.8},
    )

    assert contact.email is None
    assert "email" in contact.dropped_fields
    assert confidence["email"] == 0.0


def test_first_and_last_name_are_joined_when_name_missing() -> None:
    contact, _ = normalize({"First Name": "Ada", "Last Name": "Lovelace"}, {"type": "csv"}, trust_weights={})

    assert contact.name == "Ada Lovelace"


def test_single_token_name_is_less_plausible() -> None:
    _, confidence = normalize({"name": "Ada"}, {"type": "manual"}, trust_weights={"manual": 1.0})

    assert confidence["name"] == pytest.approx(0.8)


def test_unknown_source_uses_generic_headers_and_default_trust() -> None:
    contact, confidence = normalize(
        {"Contact Name": "Grace Hopper", "Title": "Rear Admiral"},
        {"type": "hubspot"},
        trust_weights={"default": 0.5},
    )

    assert contact.name == "Grace Hopper"
    assert contact.role == "Rear Admiral"
    assert confidence["name"] == pytest.approx(0.5)
    assert confidence["role"] == pytest.approx(0.4)


def test_payloads_pass_through_unparsed() -> None:
    contact, confidence = normalize(
        {"name": "Alice Chen", "job_history": '[{"company": "Acme"}]', "education": [{"school": "MIT"}]},
        {"type": "manual"},
        trust_weights={"manual": 1.0},
    )

    assert contact.job_history == '[{"company": "Acme"}]'
    assert contact.education == [{"school": "MIT"}]
    assert confidence["job_history"] == pytest.approx(0.7)
    assert confidence["education"] == pytest.approx(0.9)


def test_connections_are_normalized() -> None:
    contact, _ = normalize(
        {
            "name": "Alice Chen",
            "connections": [
                {"name": "Dr. Eve Park", "mutualCount": "12", "profileUrl": "eve-park"},
                {"headline": "no name here"},
            ],
        },
        {"type": "linkedin"},
        trust_weights={"linkedin": 0.95},
    )

    assert contact.connections is not None
    assert len(contact.connections) == 1
    connection = contact.connections[0]
    assert connection.name == "Eve Park"
    assert connection.mutual_count == 12
    assert connection.profile_url == "https://www.linkedin.com/in/eve-park/"
    assert connection.source == "linkedin"
    assert "connections[1]" in contact.dropped_fields


def test_value_helpers() -> None:
    assert normalize_linkedin_url("janedoe") == "https://www.linkedin.com/in/janedoe/"
    assert normalize_linkedin_url("http://uk.linkedin.com/in/Jane-Doe/") == "https://www.linkedin.com/in/jane-doe/"
    assert normalize_linkedin_url("https://example.com/janedoe") is None
    assert normalize_email("mailto:Team@Fund.io") == "team@fund.io"
    assert normalize_email("team@") is None
