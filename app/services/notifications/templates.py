"""
Plain-text email templates for collaboration and matching events.
HTML bodies are derived from the text by MailgunClient.
"""

from app.config import settings
from app.services.notifications.mailgun_client import EmailMessage

SIGNATURE = "\n\nBest regards,\nThe UvoCollab Team"


def collaboration_url(collaboration_id: str) -> str:
    return f"{settings.APP_BASE_URL.rstrip('/')}/collaboration/{collaboration_id}"


def match_url(match_id: str) -> str:
    return f"{settings.APP_BASE_URL.rstrip('/')}/dashboard/matches/{match_id}"


def _money(amount: float) -> str:
    return f"{amount:,.2f}"


def _shared_topics_line(topic_overlap: list[str]) -> str:
    return f"Shared Topics: {', '.join(topic_overlap)}\n" if topic_overlap else ""


def match_for_guest(
    to: str, guest_name: str, podcast_name: str, score: int, topic_overlap: list[str], match_id: str
) -> EmailMessage:
    text = (
        f"Great news! You have a new match!\n\nHi {guest_name},\n\n"
        f"{podcast_name} is interested in having you as a guest on their podcast!\n\n"
        f"Compatibility Score: {score}%\n{_shared_topics_line(topic_overlap)}\n"
        "This is a mutual match - you both added each other to your wishlists!\n\n"
        f"View match details: {match_url(match_id)}\n\n"
        "Start a collaboration to discuss the details and schedule your appearance."
        + SIGNATURE
    )
    return EmailMessage(to=to, subject=f"New Match: {podcast_name} wants to collaborate!", text=text)


def match_for_podcast_owner(
    to: str, guest_name: str, podcast_name: str, score: int, topic_overlap: list[str], match_id: str
) -> EmailMessage:
    text = (
        f"Great news! You have a new match!\n\nHi,\n\n"
        f"{guest_name} is interested in appearing on {podcast_name}!\n\n"
        f"Compatibility Score: {score}%\n{_shared_topics_line(topic_overlap)}\n"
        "This is a mutual match - you both added each other to your wishlists!\n\n"
        f"View match details: {match_url(match_id)}\n\n"
        "Start a collaboration to discuss the details and schedule the recording."
        + SIGNATURE
    )
    return EmailMessage(
        to=to, subject=f"New Match: {guest_name} wants to appear on your podcast!", text=text
    )


def pitch_received(
    to: str, provider_name: str, buyer_name: str, service_title: str, collaboration_id: str
) -> EmailMessage:
    text = (
        f"Hi {provider_name},\n\n"
        f"{buyer_name} has sent you a pitch for \"{service_title}\".\n\n"
        f"Review the pitch and respond: {collaboration_url(collaboration_id)}" + SIGNATURE
    )
    return EmailMessage(to=to, subject=f"New pitch from {buyer_name}", text=text)


def pitch_decided(
    to: str, buyer_name: str, provider_name: str, accepted: bool, collaboration_id: str
) -> EmailMessage:
    if accepted:
        subject = f"{provider_name} accepted your pitch"
        body = (
            f"{provider_name} accepted your pitch. Complete payment to start the "
            f"collaboration: {collaboration_url(collaboration_id)}"
        )
    else:
        subject = f"{provider_name} declined your pitch"
        body = f"{provider_name} has declined your pitch this time. Keep creating!"
    return EmailMessage(to=to, subject=subject, text=f"Hi {buyer_name},\n\n{body}" + SIGNATURE)


def guest_collaboration_request(
    to: str,
    recipient_name: str,
    initiator_name: str,
    podcast_name: str,
    price: float,
    collaboration_id: str,
) -> EmailMessage:
    terms = "This appearance is free." if price <= 0 else f"Proposed price: {_money(price)}"
    text = (
        f"Hi {recipient_name},\n\n"
        f"{initiator_name} wants to collaborate on a guest appearance for {podcast_name}.\n"
        f"{terms}\n\n"
        f"Review the terms: {collaboration_url(collaboration_id)}" + SIGNATURE
    )
    return EmailMessage(to=to, subject=f"New collaboration request from {initiator_name}", text=text)


def terms_response(
    to: str,
    recipient_name: str,
    responder_name: str,
    action: str,
    price: float,
    collaboration_id: str,
) -> EmailMessage:
    if action == "accept":
        subject = f"{responder_name} accepted the terms"
        body = f"{responder_name} accepted the collaboration terms ({_money(price)})."
    elif action == "decline":
        subject = f"{responder_name} declined the collaboration"
        body = f"{responder_name} declined the collaboration."
    else:
        subject = f"{responder_name} sent a counter-offer"
        body = f"{responder_name} proposed new terms: {_money(price)}."
    text = (
        f"Hi {recipient_name},\n\n{body}\n\nDetails: {collaboration_url(collaboration_id)}"
        + SIGNATURE
    )
    return EmailMessage(to=to, subject=subject, text=text)


def schedule_proposed(
    to: str, recipient_name: str, proposer_name: str, slot_count: int, collaboration_id: str
) -> EmailMessage:
    noun = "time" if slot_count == 1 else "times"
    text = (
        f"Hi {recipient_name},\n\n"
        f"{proposer_name} proposed {slot_count} recording {noun}.\n\n"
        f"Pick a time: {collaboration_url(collaboration_id)}" + SIGNATURE
    )
    return EmailMessage(to=to, subject=f"{proposer_name} proposed recording times", text=text)


def schedule_decided(
    to: str,
    recipient_name: str,
    responder_name: str,
    accepted: bool,
    slot_summary: str | None,
    collaboration_id: str,
    reschedule: bool = False,
) -> EmailMessage:
    kind = "reschedule request" if reschedule else "proposed schedule"
    if accepted:
        subject = f"Recording confirmed for {slot_summary}"
        body = f"{responder_name} accepted your {kind}. Recording: {slot_summary}."
    else:
        subject = f"{responder_name} declined your {kind}"
        body = f"{responder_name} declined your {kind}."
    text = (
        f"Hi {recipient_name},\n\n{body}\n\nDetails: {collaboration_url(collaboration_id)}"
        + SIGNATURE
    )
    return EmailMessage(to=to, subject=subject, text=text)


def reschedule_requested(
    to: str, recipient_name: str, requester_name: str, reason: str, collaboration_id: str
) -> EmailMessage:
    text = (
        f"Hi {recipient_name},\n\n"
        f"{requester_name} asked to reschedule the recording.\nReason: {reason}\n\n"
        f"Respond: {collaboration_url(collaboration_id)}" + SIGNATURE
    )
    return EmailMessage(to=to, subject=f"{requester_name} requested a reschedule", text=text)


def payment_received(
    to: str, recipient_name: str, buyer_name: str, amount: float, collaboration_id: str
) -> EmailMessage:
    text = (
        f"Hi {recipient_name},\n\n"
        f"{buyer_name} paid {_money(amount)} into escrow. The funds are released once the "
        f"work is delivered.\n\nDetails: {collaboration_url(collaboration_id)}" + SIGNATURE
    )
    return EmailMessage(to=to, subject="Payment received in escrow", text=text)


def deliverable_uploaded(
    to: str, recipient_name: str, uploader_name: str, file_name: str, collaboration_id: str
) -> EmailMessage:
    text = (
        f"Hi {recipient_name},\n\n"
        f"{uploader_name} uploaded \"{file_name}\".\n\n"
        f"Review and release payment: {collaboration_url(collaboration_id)}" + SIGNATURE
    )
    return EmailMessage(to=to, subject="New deliverable uploaded", text=text)


def recording_completed(
    to: str, recipient_name: str, collaboration_id: str
) -> EmailMessage:
    text = (
        f"Hi {recipient_name},\n\n"
        "The recording has been marked as complete. Upload the final files to receive payout.\n\n"
        f"Details: {collaboration_url(collaboration_id)}" + SIGNATURE
    )
    return EmailMessage(to=to, subject="Recording marked complete", text=text)


def payout_released(
    to: str, recipient_name: str, amount: float, reference: str, collaboration_id: str
) -> EmailMessage:
    text = (
        f"Hi {recipient_name},\n\n"
        f"Your payout of {_money(amount)} is on its way (reference {reference}).\n\n"
        f"Details: {collaboration_url(collaboration_id)}" + SIGNATURE
    )
    return EmailMessage(to=to, subject="Your payout has been released", text=text)


def _slot_lines(slot) -> str:
    return (
        f"Date: {slot.date}\n"
        f"Time: {slot.time} {slot.timezone}\n"
        f"Duration: {slot.duration or '60 minutes'}\n"
    )


def recording_link_added(
    to: str,
    recipient_name: str,
    slot,
    platform: str,
    recording_url: str,
    prep_notes: str | None,
    collaboration_id: str,
) -> EmailMessage:
    notes = f"Prep Notes:\n{prep_notes}\n\n" if prep_notes else ""
    text = (
        f"Hi {recipient_name},\n\n"
        "The recording link has been added for your upcoming podcast appearance!\n\n"
        f"Recording Details:\n{_slot_lines(slot)}Platform: {platform.capitalize()}\n\n"
        f"Recording Link: {recording_url}\n\n{notes}"
        f"View full collaboration details: {collaboration_url(collaboration_id)}" + SIGNATURE
    )
    return EmailMessage(to=to, subject="Recording Link Added - UvoCollab", text=text)


def recording_reminder(
    to: str,
    recipient_name: str,
    window: str,
    slot,
    recording_url: str | None,
    prep_notes: str | None,
    collaboration_id: str,
) -> EmailMessage:
    """``window`` is "24h" or "1h"."""
    link = f"Recording Link: {recording_url}\n" if recording_url else ""
    notes = f"Preparation Notes:\n{prep_notes}\n" if prep_notes else ""
    if window == "1h":
        subject = "Starting Soon: Podcast Recording in 1 Hour - UvoCollab"
        intro = "Your podcast recording starts in 1 hour!"
        checklist = "Last-minute checklist: audio working, quiet room, link bookmarked, notes ready."
    else:
        subject = "Reminder: Podcast Recording Tomorrow - UvoCollab"
        intro = "This is a reminder that your podcast recording is scheduled for tomorrow!"
        checklist = (
            "Please test your audio equipment, review any preparation notes "
            "and find a quiet location."
        )
    text = (
        f"Hi {recipient_name},\n\n{intro}\n\n"
        f"Recording Details:\n{_slot_lines(slot)}{link}\n{notes}"
        f"{checklist}\n\n"
        f"View collaboration details: {collaboration_url(collaboration_id)}" + SIGNATURE
    )
    return EmailMessage(to=to, subject=subject, text=text)
