"""Tests for community validation intake."""
from __future__ import annotations

import pytest
from sqlalchemy import func, select

from fundflow.config import get_settings
from fundflow.models import (
    AuditLog,
    CommunityValidator,
    FundRelease,
    FundReleaseStatus,
    MilestoneStatus,
    Validation,
    ValidationStatus,
    ValidatorStatus,
)
from fundflow.schemas import ValidationCreate
from fundflow.services import validations as validation_service
from fundflow.utils.errors import Conflict, InvalidInput, NotFound, OutOfBounds


def _payload(project, validator, **overrides) -> dict:
    payload = {
        "project_id": project.id,
        "milestone_id": project.milestones[0].id,
        "validator_id": validator.id,
        "photos": ["https://cdn.example.org/borehole-1.jpg"],
        "gps_location": {"lat": -1.2921, "lng": 36.8219, "accuracy": 8.5},
        "rating": 5,
        "comment": "Water flowing at the new borehole",
        "language": "sw",
    }
    payload.update(overrides)
    return payload


def _validation_count(db_session) -> int:
    return db_session.scalar(select(func.count(Validation.id)))


@pytest.mark.anyio
async def test_submit_validation_round_trip(client, db_session, make_project, make_validator):
    project = make_project()
    validator = make_validator()

    response = await client.post("/validations", json=_payload(project, validator))

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["status"] == "pending"
    assert body["message"] == validation_service.SUBMITTED_MESSAGE

    fetched = await client.get(f"/validations/{body['validation_id']}")
    assert fetched.status_code == 200
    stored = fetched.json()
    assert stored["project_id"] == project.id
    assert stored["milestone_id"] == project.milestones[0].id
    assert stored["validator_id"] == validator.id
    assert stored["rating"] == 5
    assert stored["comment"] == "Water flowing at the new borehole"
    assert stored["photos"] == ["https://cdn.example.org/borehole-1.jpg"]
    assert stored["gps_lat"] == pytest.approx(-1.2921)
    assert stored["gps_lng"] == pytest.approx(36.8219)
    assert stored["gps_accuracy"] == pytest.approx(8.5)
    assert stored["language"] == "sw"
    assert stored["status"] == "pending"


@pytest.mark.anyio
async def test_camel_case_payload_is_accepted(client, make_project, make_validator):
    project = make_project()
    validator = make_validator()

    response = await client.post(
        "/validations",
        json={
            "projectId": project.id,
            "milestoneId": project.milestones[0].id,
            "validatorId": validator.id,
            "photos": [],
            "gpsLocation": {"lat": 6.5244, "lng": 3.3792},
            "feedbackComment": "Classroom roof finished",
            "rating": 4,
            "language": "en",
        },
    )

    assert response.status_code == 201, response.text
    stored = (await client.get(f"/validations/{response.json()['validation_id']}")).json()
    assert stored["comment"] == "Classroom roof finished"
    assert stored["gps_accuracy"] is None


@pytest.mark.anyio
async def test_rating_out_of_range_persists_nothing(client, db_session, make_project, make_validator):
    project = make_project()
    validator = make_validator()

    response = await client.post("/validations", json=_payload(project, validator, rating=7))

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_RATING"
    assert _validation_count(db_session) == 0
    db_session.expire_all()
    assert db_session.get(CommunityValidator, validator.id).validation_count == 0


@pytest.mark.anyio
async def test_gps_outside_africa_persists_nothing(client, db_session, make_project, make_validator):
    project = make_project()
    validator = make_validator()

    response = await client.post(
        "/validations",
        json=_payload(project, validator, gps_location={"lat": 40.0, "lng": 10.0}),
    )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "GPS_OUT_OF_BOUNDS"
    assert _validation_count(db_session) == 0


def test_missing_ids_win_over_other_failures(db_session):
    payload = ValidationCreate(rating=9, gps_location={"lat": 80, "lng": 0})

    with pytest.raises(InvalidInput) as excinfo:
        validation_service.submit_validation(db_session, payload)

    assert excinfo.value.code == "MISSING_FIELDS"


def test_gps_is_checked_before_rating(db_session, make_project, make_validator):
    project = make_project()
    validator = make_validator()
    payload = ValidationCreate(**_payload(project, validator, rating=0, gps_location={"lat": 0, "lng": 60}))

    with pytest.raises(OutOfBounds):
        validation_service.submit_validation(db_session, payload)


def test_rating_is_checked_before_lookups(db_session):
    payload = ValidationCreate(project_id=999, milestone_id=999, validator_id=999, rating=0)

    with pytest.raises(InvalidInput):
        validation_service.submit_validation(db_session, payload)


def test_inactive_validator_is_not_found(db_session, make_project, make_validator):
    project = make_project()
    validator = make_validator(status=ValidatorStatus.INACTIVE)

    with pytest.raises(NotFound) as excinfo:
        validation_service.submit_validation(db_session, ValidationCreate(**_payload(project, validator)))

    assert excinfo.value.code == "VALIDATOR_NOT_FOUND"
    assert _validation_count(db_session) == 0


def test_unknown_project_is_not_found(db_session, make_project, make_validator):
    project = make_project()
    validator = make_validator()
    payload = ValidationCreate(**_payload(project, validator, project_id=project.id + 100))

    with pytest.raises(NotFound) as excinfo:
        validation_service.submit_validation(db_session, payload)

    assert excinfo.value.code == "PROJECT_NOT_FOUND"


def test_milestone_of_another_project_is_not_found(db_session, make_project, make_validator):
    project = make_project()
    other = make_project()
    validator = make_validator()
    payload = ValidationCreate(**_payload(project, validator, milestone_id=other.milestones[0].id))

    with pytest.raises(NotFound) as excinfo:
        validation_service.submit_validation(db_session, payload)

    assert excinfo.value.code == "MILESTONE_NOT_FOUND"


def test_accepted_validation_increments_validator_count_once(db_session, make_project, make_validator):
    project = make_project()
    validator = make_validator()

    validation_service.submit_validation(db_session, ValidationCreate(**_payload(project, validator, rating=3)))
    validation_service.submit_validation(db_session, ValidationCreate(**_payload(project, validator, rating=2)))

    db_session.expire_all()
    assert db_session.get(CommunityValidator, validator.id).validation_count == 2
    actions = db_session.scalars(select(AuditLog.action)).all()
    assert actions.count("VALIDATION_SUBMITTED") == 2


def test_duplicate_vote_rejected_when_disallowed(db_session, make_project, make_validator, monkeypatch):
    monkeypatch.setattr(get_settings(), "ALLOW_DUPLICATE_VALIDATOR_VOTES", False)
    project = make_project()
    validator = make_validator()

    validation_service.submit_validation(db_session, ValidationCreate(**_payload(project, validator)))
    with pytest.raises(Conflict) as excinfo:
        validation_service.submit_validation(db_session, ValidationCreate(**_payload(project, validator)))

    assert excinfo.value.code == "DUPLICATE_VALIDATION"
    assert _validation_count(db_session) == 1


@pytest.mark.anyio
async def test_third_positive_validation_settles_milestone(client, db_session, make_project, make_validator, releaser):
    project = make_project()
    milestone_id = project.milestones[0].id

    for rating in (5, 4, 5):
        response = await client.post("/validations", json=_payload(project, make_validator(), rating=rating))
        assert response.status_code == 201, response.text

    db_session.expire_all()
    milestone = project.milestones[0]
    assert milestone.status == MilestoneStatus.COMPLETED
    assert milestone.verified_at is not None
    assert milestone.validators_approved == 3
    statuses = db_session.scalars(select(Validation.status).where(Validation.milestone_id == milestone_id)).all()
    assert statuses == [ValidationStatus.APPROVED] * 3
    assert len(releaser.calls) == 1
    release = db_session.scalars(select(FundRelease)).one()
    assert release.status == FundReleaseStatus.RELEASED

    consensus = await client.get(f"/projects/{project.id}/milestones/{milestone_id}/consensus")
    assert consensus.json()["reached"] is True
    assert consensus.json()["milestone_status"] == "completed"


@pytest.mark.anyio
async def test_low_consensus_leaves_milestone_open(client, db_session, make_project, make_validator, releaser):
    project = make_project()

    for _ in range(3):
        response = await client.post("/validations", json=_payload(project, make_validator(), rating=3))
        assert response.status_code == 201

    db_session.expire_all()
    assert project.milestones[0].status == MilestoneStatus.ACTIVE
    assert releaser.calls == []
    statuses = set(db_session.scalars(select(Validation.status)).all())
    assert statuses == {ValidationStatus.PENDING}


def test_low_consensus_rejects_pending_when_enabled(db_session, make_project, make_validator, monkeypatch):
    monkeypatch.setattr(get_settings(), "AUTO_REJECT_LOW_CONSENSUS", True)
    project = make_project()

    for _ in range(3):
        validation_service.submit_validation(
            db_session, ValidationCreate(**_payload(project, make_validator(), rating=2))
        )

    db_session.expire_all()
    statuses = set(db_session.scalars(select(Validation.status)).all())
    assert statuses == {ValidationStatus.REJECTED}
    assert project.milestones[0].status == MilestoneStatus.ACTIVE


def test_settlement_failure_does_not_fail_intake(db_session, make_project, make_validator, releaser):
    releaser.fail = True
    project = make_project()

    results = [
        validation_service.submit_validation(db_session, ValidationCreate(**_payload(project, make_validator())))
        for _ in range(3)
    ]

    assert all(result.status == ValidationStatus.PENDING for result in results)
    db_session.expire_all()
    assert project.milestones[0].status == MilestoneStatus.ACTIVE
    assert db_session.scalars(select(FundRelease.status)).one() == FundReleaseStatus.FAILED


def test_photo_check_failures_are_swallowed(monkeypatch):
    import httpx

    def _boom(url, **kwargs):
        raise httpx.ConnectError("unreachable", request=httpx.Request("HEAD", url))

    monkeypatch.setattr(validation_service.httpx, "head", _boom)

    validation_service.check_photo_urls(["https://cdn.example.org/missing.jpg"])


@pytest.mark.anyio
@pytest.mark.parametrize("rating", [4.5, "abc", 0, 6, True, None])
async def test_rating_outside_one_to_five_is_invalid_input(client, db_session, make_project, make_validator, rating):
    project = make_project()
    validator = make_validator()

    response = await client.post("/validations", json=_payload(project, validator, rating=rating))

    assert response.status_code == 400, response.text
    assert response.json()["error"]["code"] == "INVALID_RATING"
    assert _validation_count(db_session) == 0


@pytest.mark.anyio
async def test_whole_number_rating_sent_as_text_or_float_is_accepted(client, make_project, make_validator):
    project = make_project()

    as_text = await client.post("/validations", json=_payload(project, make_validator(), rating="4"))
    as_float = await client.post("/validations", json=_payload(project, make_validator(), rating=5.0))

    assert as_text.status_code == 201, as_text.text
    assert as_float.status_code == 201, as_float.text
    stored = (await client.get(f"/validations/{as_text.json()['validation_id']}")).json()
    assert stored["rating"] == 4


@pytest.mark.anyio
async def test_gps_outside_africa_wins_over_fractional_rating(client, db_session, make_project, make_validator):
    project = make_project()
    validator = make_validator()

    response = await client.post(
        "/validations",
        json=_payload(project, validator, rating=4.5, gps_location={"lat": 60, "lng": 10}),
    )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "GPS_OUT_OF_BOUNDS"
    assert _validation_count(db_session) == 0


@pytest.mark.anyio
async def test_empty_id_is_missing_field(client, make_project, make_validator):
    project = make_project()
    validator = make_validator()
    payload = _payload(project, validator)
    del payload["project_id"]
    payload["projectId"] = ""

    response = await client.post("/validations", json=payload)

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "MISSING_FIELDS"
    assert error["details"]["missing"] == ["project_id"]


@pytest.mark.anyio
async def test_non_numeric_id_is_invalid_input(client, make_project, make_validator):
    project = make_project()
    validator = make_validator()

    response = await client.post("/validations", json=_payload(project, validator, validator_id="abc"))

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_IDENTIFIERS"


@pytest.mark.anyio
async def test_failing_notifier_does_not_fail_intake_or_settlement(
    client, db_session, make_project, make_validator, releaser, broken_notifier
):
    project = make_project()

    for rating in (5, 4, 5):
        response = await client.post("/validations", json=_payload(project, make_validator(), rating=rating))
        assert response.status_code == 201, response.text

    db_session.expire_all()
    assert project.milestones[0].status == MilestoneStatus.COMPLETED
    assert len(releaser.calls) == 1
    assert len(broken_notifier.attempts) == 4
    assert any("verified by the community" in message for message in broken_notifier.attempts)
