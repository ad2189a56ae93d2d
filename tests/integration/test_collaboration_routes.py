"""
End-to-end API tests against the in-memory store, mailer, gateway and locks.
"""

from conftest import (
    ARTIST_ID,
    GUEST_ID,
    LEGEND_ID,
    OWNER_ID,
    PODCAST_ID,
    PODCAST_SERVICE_ID,
    seed_collaboration,
)
from fastapi.testclient import TestClient

from app.db.helpers import DatabaseError
from app.main import app
from app.services.payments.flutterwave_client import PaymentGatewayError, TransactionVerification

SLOT = {"date": "2026-11-03", "time": "14:00", "timezone": "Africa/Lagos"}


def _initiate(api, price=100.0):
    response = api.as_user(GUEST_ID).post(
        "/collaborations/guest/initiate",
        json={
            "guestId": GUEST_ID,
            "podcastId": PODCAST_ID,
            "serviceId": PODCAST_SERVICE_ID,
            "price": price,
            "proposedTopics": ["ai", "growth"],
            "message": "Would love to come on",
        },
    )
    assert response.status_code == 200, response.text
    return response.json()["collaboration"]


def test_full_paid_guest_appearance(api, directory, gateway, mailer):
    collaboration = _initiate(api)
    collab_id = collaboration["id"]
    assert collaboration["status"] == "pending_agreement"
    assert collaboration["paymentDirection"] == "guest_pays_podcast"

    response = api.as_user(OWNER_ID).post(
        "/collaborations/terms/respond", json={"collaborationId": collab_id, "action": "accept"}
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Terms accepted"
    assert response.json()["collaboration"]["status"] == "pending_payment"

    response = api.as_user(GUEST_ID).post(
        "/payments/initialize", json={"collaborationId": collab_id}
    )
    assert response.status_code == 200
    checkout = response.json()["checkout"]
    assert checkout["amount"] == 100.0

    gateway.verification = TransactionVerification(
        transaction_id="987654",
        status="successful",
        amount=100.0,
        currency="NGN",
        tx_ref=checkout["txRef"],
    )
    response = api.as_user(GUEST_ID).post(
        "/payments/verify",
        json={"collaborationId": collab_id, "transactionId": "987654", "txRef": checkout["txRef"]},
    )
    assert response.status_code == 200
    assert response.json()["collaboration"]["status"] == "scheduling"
    assert response.json()["collaboration"]["escrowStatus"] == "held"

    response = api.as_user(GUEST_ID).post(
        "/schedule/propose",
        json={"collaborationId": collab_id, "proposedByRole": "guest", "slots": [SLOT]},
    )
    assert response.status_code == 200
    proposal_id = response.json()["proposal"]["id"]

    response = api.as_user(OWNER_ID).post(
        "/schedule/respond",
        json={
            "collaborationId": collab_id,
            "proposalId": proposal_id,
            "action": "accept",
            "acceptedSlotIndex": 0,
        },
    )
    assert response.status_code == 200
    assert response.json()["proposal"]["status"] == "accepted"

    response = api.as_user(GUEST_ID).post(
        "/collaborations/recording-complete",
        json={"collaborationId": collab_id, "recordingNotes": "Went well"},
    )
    assert response.status_code == 200
    assert response.json()["collaboration"]["status"] == "in_progress"

    response = api.as_user(OWNER_ID).post(
        "/collaborations/deliverables",
        json={
            "collaborationId": collab_id,
            "fileName": "episode-42.mp3",
            "fileUrl": "https://cdn.example.com/episode-42.mp3",
        },
    )
    assert response.status_code == 200
    assert len(response.json()["collaboration"]["deliverables"]) == 1

    response = api.as_user(GUEST_ID).post(
        "/collaborations/trigger-payout", json={"collaborationId": collab_id}
    )
    assert response.status_code == 200
    payout = response.json()["payout"]
    assert payout["legendAmount"] == 80.0
    assert payout["platformCommission"] == 20.0

    response = api.as_user(OWNER_ID).get(f"/collaborations/{collab_id}")
    assert response.status_code == 200
    final = response.json()["collaboration"]
    assert final["status"] == "completed"
    assert final["escrowStatus"] == "released"
    assert final["schedulingDetails"]["duration"] == "60 minutes"
    assert len(gateway.transfers) == 1


def test_free_appearance_skips_payment(api, directory, gateway):
    collab_id = _initiate(api, price=0)["id"]

    response = api.as_user(OWNER_ID).post(
        "/collaborations/terms/respond", json={"collaborationId": collab_id, "action": "accept"}
    )

    assert response.json()["collaboration"]["status"] == "scheduling"
    response = api.as_user(GUEST_ID).post(
        "/payments/initialize", json={"collaborationId": collab_id}
    )
    assert response.status_code == 400
    assert "not awaiting payment" in response.json()["error"]


def test_pitch_accept_flow(api, directory):
    response = api.as_user(ARTIST_ID).post(
        "/collaborations/pitch",
        json={
            "type": "legend",
            "legendId": LEGEND_ID,
            "serviceId": "service-legend",
            "price": 100,
            "pitchMessage": "x" * 60,
            "pitchBestWorkUrl": "https://example.com/track",
            "pitchDemoUrl": "https://cdn.example.com/demo.mp3",
        },
    )
    assert response.status_code == 200
    collab_id = response.json()["collaboration"]["id"]

    response = api.as_user(ARTIST_ID).post(
        "/collaborations/pitch/respond", json={"collaborationId": collab_id, "action": "accept"}
    )
    assert response.status_code == 403

    response = api.as_user(LEGEND_ID).post(
        "/collaborations/pitch/respond", json={"collaborationId": collab_id, "action": "accept"}
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Pitch accepted"
    assert response.json()["collaboration"]["status"] == "pending_payment"


def test_pitch_without_target_id(api, directory):
    response = api.as_user(ARTIST_ID).post(
        "/collaborations/pitch",
        json={
            "type": "legend",
            "serviceId": "service-legend",
            "price": 100,
            "pitchMessage": "x" * 60,
            "pitchBestWorkUrl": "https://example.com/track",
            "pitchDemoUrl": "https://cdn.example.com/demo.mp3",
        },
    )

    assert response.status_code == 400
    assert response.json() == {"error": "legendId is required"}


def test_missing_token_is_unauthorized(api, directory):
    response = api.post("/collaborations/trigger-payout", json={"collaborationId": "c-1"})

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized: No token provided"}


def test_request_validation_renders_as_400(api, directory):
    response = api.as_user(GUEST_ID).post(
        "/collaborations/guest/initiate",
        json={"podcastId": PODCAST_ID, "serviceId": PODCAST_SERVICE_ID, "price": 10},
    )

    assert response.status_code == 400
    assert response.json()["error"].startswith("guestId")


def test_body_user_id_must_match_token(api, directory):
    response = api.as_user(GUEST_ID).post(
        "/collaborations/guest/initiate",
        json={
            "guestId": GUEST_ID,
            "podcastId": PODCAST_ID,
            "serviceId": PODCAST_SERVICE_ID,
            "price": 10,
            "proposedTopics": ["ai"],
            "initiatorId": OWNER_ID,
        },
    )

    assert response.status_code == 403
    assert response.json() == {"error": "Forbidden: user id mismatch"}


def test_service_errors_use_error_envelope(api, directory):
    collab_id = _initiate(api)["id"]

    response = api.as_user(ARTIST_ID).get(f"/collaborations/{collab_id}")
    assert response.status_code == 403
    assert response.json() == {"error": "You are not a party to this collaboration"}

    response = api.as_user(GUEST_ID).get("/collaborations/does-not-exist")
    assert response.status_code == 404
    assert response.json() == {"error": "Collaboration not found"}

    response = api.as_user(GUEST_ID).post(
        "/collaborations/guest/initiate",
        json={
            "guestId": GUEST_ID,
            "podcastId": PODCAST_ID,
            "serviceId": PODCAST_SERVICE_ID,
            "price": 100,
            "proposedTopics": ["ai"],
        },
    )
    assert response.status_code == 400
    assert "already exists" in response.json()["error"]


def test_payout_failure_returns_500_and_keeps_escrow(api, directory, gateway):
    collab_id = seed_collaboration(
        directory,
        status="in_progress",
        escrowStatus="held",
        deliverables=[
            {
                "fileName": "ep.mp3",
                "fileUrl": "https://cdn.example.com/ep.mp3",
                "uploadedBy": OWNER_ID,
                "uploadedAt": "2026-10-01T10:00:00+00:00",
            }
        ],
    )
    gateway.transfer_error = PaymentGatewayError("Bank unavailable")

    response = api.as_user(GUEST_ID).post(
        "/collaborations/trigger-payout", json={"collaborationId": collab_id}
    )

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to initiate payout. Please contact support."}
    assert directory.raw("collaborations", collab_id)["status"] == "in_progress"


def test_reschedule_endpoints(api, directory):
    collab_id = seed_collaboration(
        directory, status="scheduled", schedulingDetails={**SLOT, "duration": "60 minutes"}
    )

    response = api.as_user(OWNER_ID).post(
        "/schedule/reschedule",
        json={
            "collaborationId": collab_id,
            "requestedByRole": "podcast_owner",
            "proposedSlots": [{**SLOT, "date": "2026-11-20"}],
            "reason": "Host is travelling",
        },
    )
    assert response.status_code == 200
    request_id = response.json()["rescheduleRequest"]["id"]

    response = api.as_user(GUEST_ID).post(
        "/schedule/reschedule/respond",
        json={
            "collaborationId": collab_id,
            "rescheduleId": request_id,
            "action": "accept",
            "acceptedSlotIndex": 0,
        },
    )
    assert response.status_code == 200

    response = api.as_user(GUEST_ID).get(f"/schedule/{collab_id}/reschedules")
    assert response.json()["count"] == 1
    assert directory.raw("collaborations", collab_id)["rescheduleCount"] == 1


def test_matching_endpoints(api, directory):
    directory.seed(
        "guest_wishlists",
        {"guestId": GUEST_ID, "podcastId": PODCAST_ID, "topics": ["ai"], "status": "pending"},
    )
    directory.seed(
        "podcast_guest_wishlists",
        {
            "podcastId": PODCAST_ID,
            "guestId": GUEST_ID,
            "preferredTopics": ["ai"],
            "isRegistered": True,
            "status": "pending",
        },
    )

    response = api.post("/matching/check-matches")
    assert response.status_code == 200
    result = response.json()["result"]
    assert result["matchesCreated"] == 1

    response = api.get("/matching/check-matches")
    assert response.json()["statistics"]["totalMatches"] == 1

    response = api.as_user(GUEST_ID).get("/matching/my-matches")
    assert response.json()["count"] == 1
    match_id = response.json()["matches"][0]["id"]

    response = api.as_user(GUEST_ID).post(
        "/matching/dismiss", json={"matchId": match_id, "dismissedBy": "podcast"}
    )
    assert response.status_code == 403

    response = api.as_user(OWNER_ID).post(
        "/matching/dismiss", json={"matchId": match_id, "dismissedBy": "podcast"}
    )
    assert response.status_code == 200
    assert response.json()["match"]["status"] == "dismissed_by_podcast"


def test_schedule_respond_reads_user_id_and_accepted_slot_index(api, directory):
    collab_id = seed_collaboration(directory, status="scheduling", escrowStatus="held")
    response = api.as_user(GUEST_ID).post(
        "/schedule/propose",
        json={
            "collaborationId": collab_id,
            "proposedBy": GUEST_ID,
            "proposedByRole": "guest",
            "slots": [SLOT, {**SLOT, "time": "16:00"}],
        },
    )
    proposal_id = response.json()["proposal"]["id"]

    response = api.as_user(OWNER_ID).post(
        "/schedule/respond",
        json={
            "collaborationId": collab_id,
            "proposalId": proposal_id,
            "userId": OWNER_ID,
            "action": "accept",
            "acceptedSlotIndex": 1,
        },
    )

    assert response.status_code == 200
    assert response.json()["proposal"]["acceptedSlotIndex"] == 1
    stored = directory.raw("collaborations", collab_id)
    assert stored["status"] == "scheduled"
    assert stored["schedulingDetails"]["time"] == "16:00"


def test_schedule_respond_user_id_must_match_token(api, directory):
    collab_id = seed_collaboration(directory, status="scheduling", escrowStatus="held")

    response = api.as_user(OWNER_ID).post(
        "/schedule/respond",
        json={
            "collaborationId": collab_id,
            "proposalId": "p-1",
            "userId": GUEST_ID,
            "action": "accept",
            "acceptedSlotIndex": 0,
        },
    )

    assert response.status_code == 403


def test_mail_outage_does_not_fail_committed_transition(api, directory, mailer):
    collab_id = seed_collaboration(directory)
    mailer.fail = True

    response = api.as_user(OWNER_ID).post(
        "/collaborations/terms/respond",
        json={"collaborationId": collab_id, "action": "accept"},
    )

    assert response.status_code == 200
    assert response.json()["collaboration"]["status"] == "pending_payment"
    assert directory.raw("collaborations", collab_id)["status"] == "pending_payment"


def test_unexpected_error_renders_json_500(api, directory, monkeypatch):
    collab_id = seed_collaboration(directory)

    async def failing_get(collection, doc_id):
        raise DatabaseError("connection reset", operation="fetch_one")

    monkeypatch.setattr(directory, "get", failing_get)
    api.as_user(GUEST_ID)
    client = TestClient(app, raise_server_exceptions=False)

    response = client.get(f"/collaborations/{collab_id}")

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {"error": "Internal server error"}


def test_recording_link_endpoint(api, directory, mailer):
    collab_id = seed_collaboration(
        directory, status="scheduled", schedulingDetails={**SLOT, "duration": "60 minutes"}
    )
    body = {
        "collaborationId": collab_id,
        "recordingUrl": "https://riverside.fm/studio/tech-talk",
        "prepNotes": "Test your mic",
    }

    response = api.as_user(GUEST_ID).post("/collaborations/recording-link", json=body)
    assert response.status_code == 403

    response = api.as_user(OWNER_ID).post("/collaborations/recording-link", json=body)
    assert response.status_code == 200, response.text
    assert response.json()["message"] == "Recording link updated successfully"
    collaboration = response.json()["collaboration"]
    assert collaboration["recordingUrl"] == "https://riverside.fm/studio/tech-talk"
    assert collaboration["recordingPlatform"] == "riverside"
    assert mailer.subjects() == ["Recording Link Added - UvoCollab"]

    response = api.as_user(OWNER_ID).post(
        "/collaborations/recording-link", json={**body, "recordingUrl": "not a url"}
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid URL format"}


def test_feedback_endpoints(api, directory):
    collab_id = seed_collaboration(directory, status="completed", escrowStatus="released")

    response = api.as_user(GUEST_ID).post(
        "/collaborations/feedback",
        json={
            "collaborationId": collab_id,
            "rating": 5,
            "wouldCollaborateAgain": True,
            "review": "Smooth session",
        },
    )
    assert response.status_code == 200, response.text
    payload = response.json()
    assert payload["message"] == "Feedback submitted successfully"
    assert payload["feedbackId"] == f"{collab_id}_{GUEST_ID}_{OWNER_ID}"
    assert payload["feedback"]["toUserId"] == OWNER_ID
    assert payload["feedback"]["isPublic"] is True

    response = api.as_user(GUEST_ID).post(
        "/collaborations/feedback",
        json={"collaborationId": collab_id, "rating": 3, "wouldCollaborateAgain": False},
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Feedback already submitted for this collaboration"}

    response = api.as_user(ARTIST_ID).get("/collaborations/feedback", params={"toUserId": OWNER_ID})
    assert response.status_code == 200
    assert response.json()["count"] == 1
    assert response.json()["feedback"][0]["rating"] == 5

    response = api.as_user(OWNER_ID).get(
        "/collaborations/feedback", params={"collaborationId": collab_id}
    )
    assert response.json()["count"] == 1

    response = api.as_user(OWNER_ID).get("/collaborations/feedback")
    assert response.status_code == 400


def test_recommendations_endpoint(api, directory):
    response = api.as_user(GUEST_ID).get("/matching/recommendations")

    assert response.status_code == 200, response.text
    payload = response.json()
    assert payload["success"] is True
    assert payload["userType"] == "guest"
    assert [r["recommendedId"] for r in payload["recommendations"]] == [PODCAST_ID]
    assert payload["recommendations"][0]["compatibilityScore"] == 45

    response = api.as_user(ARTIST_ID).get("/matching/recommendations")
    assert response.status_code == 400
