# -*- coding: utf-8 -*-
# Daily Price Emails (SMTP)
# Copyright (c) 2025 Jan Sarivuo

"""
Hintasähköpostien muotoilu ja lähetys.

Lähetys tehdään tarkoituksella peräkkäin: yksi sähköposti per operaattori,
ja jokaisesta yrityksestä kirjataan email_logs-rivi ennen seuraavaa.
Yhden vastaanottajan virhe ei keskeytä muiden lähetystä.
"""

import logging
import smtplib
from datetime import date
from email.message import EmailMessage
from html import escape
from typing import List, Optional, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import settings
from database import EmailLog
from schemas import EmailErrorItem, OperatorPriceResult

log = logging.getLogger("PriceEmailer")


class Mailer(Protocol):
    def send(self, to: str, subject: str, html: str) -> None:
        ...


class SmtpMailer:
    """
    SMTP-lähetin. Portti 465 käyttää suoraa TLS-yhteyttä, muut portit
    päivitetään STARTTLS:llä, jos palvelin tukee sitä.
    """

    def __init__(self, host: str, port: int, user: Optional[str] = None,
                 password: Optional[str] = None, sender: str = "", timeout: int = 30):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "SmtpMailer":
        return cls(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            user=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            sender=settings.EMAIL_FROM,
        )

    def _connect(self) -> smtplib.SMTP:
        if self.port == 465:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)

        smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        smtp.ehlo()
        if smtp.has_extn("starttls"):
            smtp.starttls()
            smtp.ehlo()
        return smtp

    def send(self, to: str, subject: str, html: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content("This message contains HTML content. Please use an HTML capable mail client.")
        msg.add_alternative(html, subtype="html")

        with self._connect() as smtp:
            if self.user:
                smtp.login(self.user, self.password or "")
            smtp.send_message(msg)


# -----------------------------------------------------------------------------
# Muotoilu
# -----------------------------------------------------------------------------

def format_subject(on_date: date) -> str:
    # Esim. "Daily Fuel Prices - 10/19/2026"
    return f"Daily Fuel Prices - {on_date.month}/{on_date.day}/{on_date.year}"


def format_long_date(on_date: date) -> str:
    # Esim. "Monday, October 19, 2026"
    return f"{on_date:%A}, {on_date:%B} {on_date.day}, {on_date.year}"


def format_email_content(result: OperatorPriceResult, on_date: date) -> str:
    """Muodostaa HTML-rungon: polttoainetyyppi ja lopullinen hinta riveittäin."""
    cell = "padding: 8px; border: 1px solid #ddd;"
    head = cell + " background-color: #f2f2f2;"

    price_rows = "".join(
        f"""
        <tr>
          <td style="{cell}">{escape(line.fuel_type_name)}</td>
          <td style="{cell} text-align: right;">{line.final_price:.4f}</td>
        </tr>"""
        for line in result.prices
    )

    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2>Daily Fuel Prices</h2>
      <p>Hello {escape(result.operator_name)},</p>
      <p>Here are your fuel prices for {format_long_date(on_date)} at {escape(result.location)}:</p>

      <table style="width: 100%; border-collapse: collapse; margin-top: 20px;">
        <thead>
          <tr>
            <th style="{head} text-align: left;">Fuel Type</th>
            <th style="{head} text-align: right;">Price</th>
          </tr>
        </thead>
        <tbody>{price_rows}
        </tbody>
      </table>

      <p style="margin-top: 20px;">These prices have been calculated based on today's rack prices with your specific discount applied.</p>

      <p>Thank you,<br>Fuel Price Automation System</p>
    </div>
    """


# -----------------------------------------------------------------------------
# Lähetys
# -----------------------------------------------------------------------------

def _log_attempt(db: Session, result: OperatorPriceResult, status: str,
                 error_message: Optional[str] = None) -> None:
    """
    Kirjaa lähetysyrityksen. Lokivirhe ei keskeytä erää: istunto
    palautetaan (rollback), jotta seuraavat kirjaukset onnistuvat.
    """
    try:
        db.add(EmailLog(
            operator_id=result.operator_id,
            status=status,
            error_message=error_message,
            price_data=[line.model_dump(by_alias=True) for line in result.prices],
        ))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        log.exception(f"Failed to write email log for operator {result.operator_id} (status={status})")


def send_price_emails(db: Session, results: Sequence[OperatorPriceResult],
                      mailer: Mailer, on_date: date) -> List[EmailErrorItem]:
    """
    Lähettää hinnat jokaiselle operaattorille ja palauttaa epäonnistuneet.
    """
    errors: List[EmailErrorItem] = []
    subject = format_subject(on_date)

    for result in results:
        try:
            mailer.send(result.operator_email, subject, format_email_content(result, on_date))
        except Exception as e:
            log.warning(f"Email to {result.operator_email} (operator {result.operator_id}) failed: {e}")
            _log_attempt(db, result, "error", str(e))
            errors.append(EmailErrorItem(
                operator_id=result.operator_id,
                operator_email=result.operator_email,
                error=str(e),
            ))
            continue

        _log_attempt(db, result, "sent")

    log.info(f"Price emails done. Sent: {len(results) - len(errors)}, Failed: {len(errors)}")
    return errors
