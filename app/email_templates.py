"""
MJML Email Templates
Staff notifications for portal bookings, using MJML for cross-client rendering
"""

import html
from typing import Optional

from .config import STUDIO_NAME

# Studio dashboard colors - Teal/Slate color scheme
THEME = {
    "primary": "#14b8a6",
    "primary_dark": "#0d9488",
    "primary_light": "#ccfbf1",
    "background": "#f8fafc",
    "card_bg": "#ffffff",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "success": "#14b8a6",
    "warning": "#f59e0b",
    "danger": "#ef4444",
}


def _e(value) -> str:
    return html.escape(str(value), quote=True)


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{_e(cta_url)}"
              background-color="{THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {_e(cta_label)}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{_e(title)}</mj-title>
        <mj-preview>{_e(preview_text)}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Apple SD Gothic Neo', 'Malgun Gothic', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="32px 20px 0 20px">
          <mj-column>
            <mj-text font-size="18px" font-weight="700" color="{THEME['primary_dark']}" padding="0">
              {_e(STUDIO_NAME)}
            </mj-text>
            <mj-divider border-color="{THEME['border']}" border-width="1px" padding="24px 0 32px 0" />
          </mj-column>
        </mj-section>

        <!-- Main Content -->
        <mj-section background-color="#ffffff" padding="0 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {_e(title)}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <!-- Footer -->
        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              Sent automatically by the {_e(STUDIO_NAME)} STO booking sync.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def _detail_table(rows: list[tuple[str, str]]) -> str:
    cells = "".join(
        f"""
        <tr>
          <td style="padding: 8px 0; color: {THEME['text_muted']}; width: 120px;">{_e(label)}</td>
          <td style="padding: 8px 0; color: {THEME['text_primary']}; font-weight: 500;">{_e(value)}</td>
        </tr>"""
        for label, value in rows
    )
    return f"""
    <mj-table font-size="15px" padding="16px 0 0 0">
      {cells}
    </mj-table>
    """


def format_time_slots(time_slots: list[int]) -> str:
    """[9, 10, 11] -> '09:00 - 12:00'"""
    if not time_slots:
        return "-"
    return f"{min(time_slots):02d}:00 - {max(time_slots) + 1:02d}:00"


def new_booking_template(
    applicant_name: str,
    facility_name: str,
    rental_date: str,
    time_slots: list[int],
    status_label: str,
    organization: Optional[str] = None,
    dashboard_url: Optional[str] = None,
) -> str:
    """New booking received on the STO portal"""
    rows = [
        ("Applicant", applicant_name),
        ("Studio", facility_name),
        ("Date", rental_date),
        ("Time", format_time_slots(time_slots)),
        ("Status", status_label),
    ]
    if organization:
        rows.insert(1, ("Organization", organization))

    content = f"""
    <mj-text>
      A new reservation request arrived on the STO portal.
    </mj-text>
    {_detail_table(rows)}
    """
    return get_base_template(
        title="New STO booking",
        preview_text=f"{applicant_name} booked {facility_name} on {rental_date}",
        content_sections=content,
        cta_url=dashboard_url,
        cta_label="Open bookings",
    )


def status_change_template(
    applicant_name: str,
    facility_name: str,
    rental_date: str,
    time_slots: list[int],
    previous_label: str,
    new_label: str,
    dashboard_url: Optional[str] = None,
) -> str:
    """Status of an existing STO booking changed"""
    content = f"""
    <mj-text>
      The booking of <strong>{_e(applicant_name)}</strong> changed status.
    </mj-text>
    <mj-text font-size="18px" font-weight="600" color="{THEME['primary_dark']}" padding="8px 0">
      {_e(previous_label)} &#8594; {_e(new_label)}
    </mj-text>
    {_detail_table([
        ("Studio", facility_name),
        ("Date", rental_date),
        ("Time", format_time_slots(time_slots)),
    ])}
    """
    return get_base_template(
        title="STO booking status changed",
        preview_text=f"{applicant_name}: {previous_label} -> {new_label}",
        content_sections=content,
        cta_url=dashboard_url,
        cta_label="Open bookings",
    )
