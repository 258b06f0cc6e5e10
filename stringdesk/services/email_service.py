# Customer-facing transactional email
import logging
import os
from typing import Dict

import resend
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


class EmailService:
    """
    Centralized email service using Resend
    """

    def __init__(self):
        """Initialize Resend with API key"""
        self.from_email = os.getenv("RESEND_FROM_EMAIL", "onboarding@resend.dev")
        self.frontend_url = os.getenv("FRONTEND_URL", "http://localhost:3000")
        self.api_key = os.getenv("RESEND_API_KEY")
        self.disabled = os.getenv("TESTING") == "True" or not self.api_key
        if self.disabled:
            logger.info("EmailService disabled (test mode or RESEND_API_KEY missing)")
            return
        resend.api_key = self.api_key

    def _send(self, to_email, subject, html) -> Dict:
        if self.disabled:
            return {"success": True, "message": "Email skipped", "email_id": None}
        try:
            params = {
                "from": self.from_email,
                "to": [to_email],
                "subject": subject,
                "html": html,
            }
            email_response = resend.Emails.send(params)
            return {
                "success": True,
                "message": "Email sent successfully",
                "email_id": email_response.get("id"),
            }
        except Exception as e:
            logger.error(f"Failed to send '{subject}' to {to_email}: {e}")
            return {"success": False, "error": str(e)}

    def _layout(self, heading, body_html, cta_label=None, cta_path=None):
        cta = ""
        if cta_label and cta_path:
            cta = f"""
            <p style="margin: 30px 0 0 0;">
                <a href="{self.frontend_url}{cta_path}"
                   style="background-color: #1f6f43; color: #ffffff; padding: 12px 28px; border-radius: 8px; text-decoration: none; font-weight: 600;">
                    {cta_label}
                </a>
            </p>"""
        return f"""
        <!DOCTYPE html>
        <html>
        <body style="margin: 0; padding: 30px 20px; font-family: 'Segoe UI', Arial, sans-serif; background-color: #eef4ef;">
            <table width="600" cellpadding="0" cellspacing="0" align="center" style="background-color: #ffffff; border-radius: 16px;">
                <tr>
                    <td style="background-color: #1f6f43; padding: 30px 40px; border-radius: 16px 16px 0 0;">
                        <h1 style="color: #ffffff; margin: 0; font-size: 24px;">{heading}</h1>
                    </td>
                </tr>
                <tr>
                    <td style="padding: 35px 40px; color: #2d3748; font-size: 16px; line-height: 1.6;">
                        {body_html}
                        {cta}
                    </td>
                </tr>
            </table>
        </body>
        </html>
        """

    def send_payment_rejected(self, to_email, customer_name, order_id, reason):
        body = f"""
            <p>Hi <strong>{customer_name}</strong>,</p>
            <p>We could not verify the payment for order <strong>#{order_id}</strong>.</p>
            <p><strong>Reason:</strong> {reason}</p>
            <p>Please upload a new payment receipt so we can start stringing your racket.</p>
        """
        return self._send(
            to_email,
            f"Payment for order #{order_id} was rejected",
            self._layout("Payment Rejected", body, "Upload receipt", f"/orders/{order_id}"),
        )

    def send_order_completed(self, to_email, customer_name, order_id, points_earned):
        body = f"""
            <p>Hi <strong>{customer_name}</strong>,</p>
            <p>Your racket for order <strong>#{order_id}</strong> is freshly strung and ready for pickup.</p>
            <p>You earned <strong>{points_earned}</strong> points with this order.</p>
        """
        return self._send(
            to_email,
            f"Order #{order_id} is ready for pickup",
            self._layout("Your racket is ready", body, "View order", f"/orders/{order_id}"),
        )

    def send_pickup_reminder(self, to_email, customer_name, order_id):
        body = f"""
            <p>Hi <strong>{customer_name}</strong>,</p>
            <p>Just a reminder that order <strong>#{order_id}</strong> is still waiting for you at the counter.</p>
        """
        return self._send(
            to_email,
            f"Reminder: order #{order_id} is waiting for pickup",
            self._layout("Pickup reminder", body),
        )

    def send_package_expiring(self, to_email, customer_name, package_name, days_left, remaining, discount):
        offer = ""
        if discount:
            offer = f"<p>Renew before it expires and get <strong>{discount:g}% off</strong> your next package.</p>"
        body = f"""
            <p>Hi <strong>{customer_name}</strong>,</p>
            <p>Your <strong>{package_name}</strong> package expires in <strong>{days_left} day(s)</strong>
            with {remaining} restring(s) left.</p>
            {offer}
        """
        return self._send(
            to_email,
            f"Your {package_name} package expires soon",
            self._layout("Package expiring soon", body, "View packages", "/packages"),
        )


email_service = EmailService()
