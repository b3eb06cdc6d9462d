"""
HTML email templates, one per appointment event.
Every template returns an EmailMessage(subject, html); interpolated values are escaped.
"""

from datetime import date, datetime
from html import escape
from typing import NamedTuple, Optional

from mobipet.core import config

THEME = {
    "primary": "#4e968f",
    "text_muted": "#666666",
    "border": "#e0e0e0",
    "summary_bg": "#f8f9fa",
    "warning_bg": "#fff3cd",
    "warning_border": "#ffc107",
    "warning_text": "#856404",
    "success_bg": "#e8f5e9",
    "success_border": "#4caf50",
    "success_text": "#2e7d32",
    "danger_bg": "#fdecea",
    "danger_border": "#ef4444",
}

BRAND_NAME = "MobiPet"


class EmailMessage(NamedTuple):
    subject: str
    html: str


def format_date(value) -> str:
    if value is None:
        return "To be confirmed"
    if isinstance(value, (date, datetime)):
        return value.strftime("%d %B %Y")
    return str(value)


def _bookings_url() -> str:
    return f"{config.FRONTEND_URL}/portal/bookings"


def get_base_template(
    greeting_name: str,
    body_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Wrap body sections in the shared header, greeting, call to action and footer"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
          <div style="text-align: center; margin-top: 20px;">
            <a href="{escape(cta_url)}" style="background-color: {THEME['primary']}; color: white; padding: 10px 20px; text-decoration: none; border-radius: 4px;">
              {escape(cta_label)}
            </a>
          </div>"""

    return f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <div style="background-color: {THEME['primary']}; padding: 20px; text-align: center;">
          <h1 style="color: white; margin: 0;">{BRAND_NAME}</h1>
        </div>
        <div style="padding: 20px; border: 1px solid {THEME['border']}; border-top: none;">
          <p>Hello {escape(greeting_name)},</p>
          {body_sections}
          {cta_section}
          <p style="margin-top: 20px;">Best regards,<br>The {BRAND_NAME} Team</p>
        </div>
        <div style="text-align: center; padding: 10px; color: {THEME['text_muted']}; font-size: 12px;">
          &copy; {datetime.utcnow().year} {BRAND_NAME}. All rights reserved.
        </div>
      </div>
    """


def _panel(background: str, rows: list[tuple[str, str]], border: Optional[str] = None, heading: str = "") -> str:
    border_style = f"border-left: 4px solid {border};" if border else "border-radius: 5px;"
    heading_html = f'<h3 style="margin-top: 0;">{escape(heading)}</h3>' if heading else ""
    row_html = "".join(
        f'<p style="margin: 5px 0;"><strong>{escape(label)}:</strong> {escape(value)}</p>'
        for label, value in rows
    )
    return f'<div style="background-color: {background}; padding: 15px; {border_style} margin: 20px 0;">{heading_html}{row_html}</div>'


def appointment_accepted_template(owner_name: str, pet_name: str, appointment_date, time_slot: str) -> EmailMessage:
    body = f"""
          <p>Good news! Your appointment for {escape(pet_name)} has been accepted by our veterinarian.</p>
          {_panel(THEME['summary_bg'], [("Date", format_date(appointment_date)), ("Time", time_slot or "To be confirmed")])}
          <p>The veterinarian will arrive at your location during the scheduled time slot. Please ensure your pet is available and ready for the appointment.</p>"""
    return EmailMessage(
        subject=f"Your appointment for {pet_name} has been accepted",
        html=get_base_template(owner_name, body, _bookings_url(), "View Appointment"),
    )


def appointment_declined_template(owner_name: str, pet_name: str, appointment_date, reason: Optional[str] = None) -> EmailMessage:
    rows = [("Date", format_date(appointment_date))]
    if reason:
        rows.append(("Reason", reason))
    body = f"""
          <p>Unfortunately, your appointment for {escape(pet_name)} has been declined by the vet.</p>
          {_panel(THEME['danger_bg'], rows, border=THEME['danger_border'])}
          <p>The hold on your card has been released. Please book a new appointment at a time that suits you.</p>"""
    return EmailMessage(
        subject=f"Your appointment for {pet_name} has been declined",
        html=get_base_template(owner_name, body, f"{config.FRONTEND_URL}/book", "Book Again"),
    )


def time_proposed_template(
    owner_name: str,
    pet_name: str,
    old_date,
    old_time: Optional[str],
    new_date,
    new_time: str,
    message: Optional[str] = None,
) -> EmailMessage:
    rows = [
        ("Original date", format_date(old_date)),
        ("Original time", old_time or "To be confirmed"),
        ("Proposed date", format_date(new_date)),
        ("Proposed time", new_time),
    ]
    if message:
        rows.append(("Message from vet", message))
    body = f"""
          <p>Our veterinarian has proposed a new time for your appointment with {escape(pet_name)}.</p>
          {_panel(THEME['warning_bg'], rows, border=THEME['warning_border'])}
          <p>Please log in to your {BRAND_NAME} account to accept or decline this proposal.</p>"""
    return EmailMessage(
        subject=f"New time proposed for your appointment with {pet_name}",
        html=get_base_template(owner_name, body, _bookings_url(), "Respond to Proposal"),
    )


def appointment_completed_template(
    owner_name: str,
    pet_name: str,
    appointment_date,
    vet_name: str,
    shared_notes: Optional[str] = None,
    follow_up: Optional[str] = None,
) -> EmailMessage:
    rows = [("Veterinarian", vet_name), ("Date", format_date(appointment_date))]
    if shared_notes:
        rows.append(("Notes from your veterinarian", shared_notes))
    if follow_up:
        rows.append(("Follow-up recommended", follow_up))
    body = f"""
          <p>Your appointment for {escape(pet_name)} has been completed. Thank you for using {BRAND_NAME}!</p>
          {_panel(THEME['success_bg'], rows, border=THEME['success_border'], heading="Visit Summary")}
          <p>You can view the complete details of this appointment, including any additional services and costs, in your account.</p>"""
    return EmailMessage(
        subject=f"Appointment for {pet_name} completed - Visit Summary",
        html=get_base_template(owner_name, body, _bookings_url(), "View Appointment Details"),
    )


def appointment_cancelled_template(vet_name: str, pet_name: str, appointment_date, time_slot: Optional[str]) -> EmailMessage:
    body = f"""
          <p>The owner of {escape(pet_name)} has cancelled their appointment.</p>
          {_panel(THEME['summary_bg'], [("Date", format_date(appointment_date)), ("Time", time_slot or "To be confirmed")])}
          <p>No further action is needed.</p>"""
    return EmailMessage(
        subject=f"Appointment for {pet_name} cancelled",
        html=get_base_template(vet_name, body, f"{config.FRONTEND_URL}/vet/appointments", "View Schedule"),
    )


def vet_welcome_template(first_name: str) -> EmailMessage:
    body = f"""
          <p>Your application to join {BRAND_NAME} as a veterinary provider has been approved.</p>
          <p>Sign in with this email address to set your password and start accepting house calls.</p>"""
    return EmailMessage(
        subject=f"Welcome to {BRAND_NAME}",
        html=get_base_template(first_name, body, f"{config.FRONTEND_URL}/login", "Sign In"),
    )


def clinical_report_template(
    recipient_name: str,
    pet_name: str,
    appointment_date,
    report,
    include_confidential: bool = False,
) -> EmailMessage:
    """The visit report; confidential notes only go into the vet's copy"""

    rows = [("Date", format_date(appointment_date)), ("Notes", report.shared_notes or "No additional notes.")]
    if include_confidential:
        rows.append(("Confidential notes (vet only)", report.confidential_notes or "No confidential notes."))
    if report.follow_up_recommended:
        follow_up = format_date(report.follow_up_date) if report.follow_up_date else "Recommended"
        if report.follow_up_reason:
            follow_up = f"{follow_up}: {report.follow_up_reason}"
        rows.append(("Follow-up", follow_up))

    services = report.additional_services or []
    service_rows = [(item.get("name") or "Service", f"${float(item.get('price') or 0):.2f}") for item in services]
    if service_rows:
        service_rows.append(("Total", f"${float(report.total_additional_cost or 0):.2f}"))

    body = f"""
          <p>Here is the veterinary report for {escape(pet_name)} from the appointment on {escape(format_date(appointment_date))}.</p>
          {_panel(THEME['summary_bg'], rows, heading="Visit Report")}
          {_panel(THEME['summary_bg'], service_rows, heading="Additional Services & Medication") if service_rows else ""}
          <p>Thank you for using {BRAND_NAME} for your veterinary services.</p>"""
    return EmailMessage(
        subject=f"Veterinary Report for {pet_name}",
        html=get_base_template(recipient_name, body),
    )
