from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from html import escape as html_escape
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from jobboard.core.clock import as_utc
from jobboard.core.config import settings
from jobboard.models.application import Application
from jobboard.models.interview_reschedule_request import InterviewRescheduleRequest
from jobboard.models.interview_token import InterviewToken


@dataclass(frozen=True)
class EmailContent:
    subject: str
    html_body: str
    text_body: str


def accept_url(acceptance_token: str) -> str:
    return f"{settings.FRONTEND_BASE_URL}/interview/accept/{acceptance_token}"


def reschedule_url(reschedule_token: str) -> str:
    return f"{settings.FRONTEND_BASE_URL}/interview/reschedule/{reschedule_token}"


def application_url(application_id: int) -> str:
    return f"{settings.FRONTEND_BASE_URL}/admin/applications/{application_id}"


def format_when(value: datetime, tz_name: str | None) -> str:
    value = as_utc(value)
    try:
        local = value.astimezone(ZoneInfo(tz_name or "UTC"))
    except ZoneInfoNotFoundError:
        local = value
    return local.strftime("%A, %B %d, %Y at %I:%M %p %Z").replace(" 0", " ")


def format_type(interview_type: str) -> str:
    return {"video": "Video", "phone": "Phone", "in-person": "In-person"}.get(interview_type, interview_type.title())


def _detail_rows(token: InterviewToken, job_title: str) -> list[tuple[str, str]]:
    rows = [
        ("Position", job_title),
        ("Date & Time", format_when(token.scheduled_at, token.timezone)),
        ("Duration", f"{token.duration_minutes} minutes"),
        ("Format", f"{format_type(token.interview_type)} Interview"),
    ]
    if token.location:
        rows.append(("Location", token.location))
    if token.meeting_link:
        rows.append(("Meeting Link", token.meeting_link))
    return rows


def _html_rows(rows: Iterable[tuple[str, str]]) -> str:
    return "".join(
        f'<p style="margin: 5px 0;"><strong>{html_escape(k)}:</strong> {html_escape(v)}</p>' for k, v in rows
    )


def _text_rows(rows: Iterable[tuple[str, str]]) -> str:
    return "\n".join(f"- {k}: {v}" for k, v in rows)


def _html_block(title: str, body: str | None) -> str:
    if not body:
        return ""
    return (
        '<div style="background: #f8f9fa; border-radius: 8px; padding: 16px; margin-bottom: 16px;">'
        f'<h4 style="margin: 0 0 8px 0;">{html_escape(title)}</h4>'
        f'<p style="margin: 0; white-space: pre-wrap;">{html_escape(body)}</p>'
        "</div>"
    )


def candidate_invitation(application: Application, token: InterviewToken, *, reminder: bool = False) -> EmailContent:
    """Invitation (or resend reminder) with distinct accept and reschedule links."""
    job_title = application.job_title
    rows = _detail_rows(token, job_title)
    accept = accept_url(token.acceptance_token)
    reschedule = reschedule_url(token.reschedule_token)
    respond_by = as_utc(token.expires_at).strftime("%B %d, %Y")

    if reminder:
        subject = f"Interview Invitation Reminder: {job_title} Position"
        heading = "Interview Invitation Reminder"
        intro = "We recently sent you an interview invitation and wanted to make sure you received it."
    else:
        subject = f"Interview Invitation: {job_title} Position"
        heading = "You're invited to interview"
        intro = f"Thank you for applying for the {job_title} position. We'd like to invite you to an interview."

    html_body = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
      <h2 style="margin-top: 0;">{html_escape(heading)}</h2>
      <p>Hi {html_escape(application.name)},</p>
      <p>{html_escape(intro)}</p>
      <div style="background: #e8f4fd; border-radius: 8px; padding: 20px; margin-bottom: 20px;">
        <h3 style="margin: 0 0 12px 0;">Interview Details</h3>
        {_html_rows(rows)}
      </div>
      {_html_block("Interview Agenda", token.agenda)}
      {_html_block("Additional Notes", token.notes)}
      <div style="text-align: center; margin: 24px 0;">
        <a href="{html_escape(accept)}" style="display: inline-block; background: #28a745; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; font-weight: bold; margin: 0 10px;">Accept Interview</a>
        <a href="{html_escape(reschedule)}" style="display: inline-block; background: #ffc107; color: #212529; padding: 12px 24px; text-decoration: none; border-radius: 6px; font-weight: bold; margin: 0 10px;">Request Reschedule</a>
      </div>
      <p style="font-size: 14px; color: #6c757d;">Please respond by {html_escape(respond_by)}.</p>
    </div>
    """.strip()

    text_parts = [
        heading,
        "",
        f"Hi {application.name},",
        "",
        intro,
        "",
        "Interview Details:",
        _text_rows(rows),
    ]
    if token.agenda:
        text_parts += ["", "Interview Agenda:", token.agenda]
    if token.notes:
        text_parts += ["", "Additional Notes:", token.notes]
    text_parts += [
        "",
        "Please respond to this invitation:",
        f"Accept Interview: {accept}",
        f"Request Reschedule: {reschedule}",
        "",
        f"Please respond by {respond_by}.",
    ]

    return EmailContent(subject=subject, html_body=html_body, text_body="\n".join(text_parts))


def hiring_manager_accepted(application: Application, token: InterviewToken) -> EmailContent:
    job_title = application.job_title
    rows = [("Candidate", application.name)] + _detail_rows(token, job_title)
    link = application_url(application.id)

    subject = f"Interview Accepted: {application.name} - {job_title}"
    html_body = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2>Interview Accepted</h2>
      <p>The candidate confirmed their attendance at the scheduled time.</p>
      <div style="background: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">{_html_rows(rows)}</div>
      <p><a href="{html_escape(link)}">View Application</a></p>
    </div>
    """.strip()
    text_body = "\n".join(
        [
            "Interview Accepted",
            "",
            "The candidate confirmed their attendance at the scheduled time.",
            "",
            _text_rows(rows),
            "",
            f"View Application: {link}",
        ]
    )
    return EmailContent(subject=subject, html_body=html_body, text_body=text_body)


def _alternative_time_lines(request: InterviewRescheduleRequest) -> list[str]:
    lines: list[str] = []
    for idx, slot in enumerate(request.alternative_times or [], start=1):
        date = (slot or {}).get("date", "")
        time = (slot or {}).get("time", "")
        lines.append(f"{idx}. {date} {time}".rstrip())
    return lines


def hiring_manager_reschedule(
    application: Application,
    token: InterviewToken,
    request: InterviewRescheduleRequest,
) -> EmailContent:
    job_title = application.job_title
    rows = [
        ("Candidate", application.name),
        ("Position", job_title),
        ("Original Time", format_when(token.scheduled_at, token.timezone)),
    ]
    link = application_url(application.id)
    times = _alternative_time_lines(request)

    subject = f"Interview Reschedule Request: {application.name} - {job_title}"

    html_sections = [_html_rows(rows)]
    text_sections = [_text_rows(rows)]
    if times:
        html_sections.append(
            "<h4>Suggested times</h4><ol>"
            + "".join(f"<li>{html_escape(t.split('. ', 1)[-1])}</li>" for t in times)
            + "</ol>"
        )
        text_sections += ["", "Suggested times:", *times]
    if request.written_response:
        html_sections.append(_html_block("Candidate's availability", request.written_response))
        text_sections += ["", "Candidate's availability:", request.written_response]
    if request.reason:
        html_sections.append(_html_block("Reason", request.reason))
        text_sections += ["", "Reason:", request.reason]

    html_body = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2>Interview Reschedule Request</h2>
      <p>The candidate asked for a different interview time.</p>
      <div style="background: #fff3cd; padding: 20px; border-radius: 8px; margin: 20px 0;">{"".join(html_sections)}</div>
      <p><a href="{html_escape(link)}">View Application</a></p>
    </div>
    """.strip()
    text_body = "\n".join(
        [
            "Interview Reschedule Request",
            "",
            "The candidate asked for a different interview time.",
            "",
            *text_sections,
            "",
            f"View Application: {link}",
        ]
    )
    return EmailContent(subject=subject, html_body=html_body, text_body=text_body)
