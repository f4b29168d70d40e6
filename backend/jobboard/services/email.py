from __future__ import annotations

import logging
import smtplib
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate
from enum import Enum

import boto3
import resend
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, EndpointConnectionError

from jobboard.core.config import settings

logger = logging.getLogger(__name__)


class EmailNotConfiguredError(RuntimeError):
    pass


class EmailDeliveryError(RuntimeError):
    """
    Raised when a provider is configured but delivery fails.
    Message should be safe to surface to clients in dev.
    """


class DeliveryStatus(str, Enum):
    sent = "sent"
    skipped = "skipped"
    failed = "failed"


@dataclass(frozen=True)
class DeliveryResult:
    status: DeliveryStatus
    provider: str
    message_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == DeliveryStatus.sent


@dataclass(frozen=True)
class EmailConfig:
    enabled: bool
    provider: str
    from_email: str = ""
    resend_api_key: str = ""
    aws_region: str = ""
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from_email: str = ""
    smtp_use_tls: bool = True
    smtp_use_ssl: bool = False
    timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls) -> "EmailConfig":
        return cls(
            enabled=settings.EMAIL_ENABLED,
            provider=settings.EMAIL_PROVIDER,
            from_email=settings.FROM_EMAIL,
            resend_api_key=settings.RESEND_API_KEY,
            aws_region=settings.AWS_REGION,
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            smtp_username=settings.SMTP_USERNAME,
            smtp_password=settings.SMTP_PASSWORD,
            smtp_from_email=settings.SMTP_FROM_EMAIL,
            smtp_use_tls=settings.SMTP_USE_TLS,
            smtp_use_ssl=settings.SMTP_USE_SSL,
            timeout_seconds=settings.EMAIL_TIMEOUT_SECONDS,
        )


def _normalize_provider(raw: str | None) -> str:
    """
    Supported providers:
    - resend (default when unset)
    - ses
    - gmail
    Legacy alias:
    - smtp -> gmail
    """
    provider = (raw or "").strip().lower()
    if not provider:
        return "resend"
    if provider == "smtp":
        return "gmail"
    if provider in {"resend", "ses", "gmail"}:
        return provider
    raise EmailNotConfiguredError(
        f"Unsupported EMAIL_PROVIDER={provider!r}. Supported: resend (default), ses, gmail. Legacy alias: smtp -> gmail."
    )


class EmailSender:
    """
    Outbound email for interview notifications.

    `send` never raises for delivery problems: interview scheduling treats
    email as a soft step, so failures come back as a `DeliveryResult`.
    """

    def __init__(self, config: EmailConfig):
        self.config = config

    # ------------------------------------------------------------------
    # Config checks
    # ------------------------------------------------------------------
    def _require_from_email(self) -> str:
        """FROM_EMAIL is used only for ses and resend; gmail/smtp keeps the SMTP-authenticated From."""
        if not self.config.from_email:
            raise EmailNotConfiguredError("FROM_EMAIL is not set")
        return self.config.from_email

    def _require_smtp_config(self) -> None:
        if not self.config.smtp_host:
            raise EmailNotConfiguredError("SMTP_HOST is not set")
        if not self.config.smtp_from_email:
            raise EmailNotConfiguredError("SMTP_FROM_EMAIL is not set")

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------
    def _send_ses(self, to_email: str, subject: str, html_body: str, text_body: str) -> str | None:
        region = (self.config.aws_region or "").strip()
        if not region:
            raise EmailNotConfiguredError("AWS_REGION is not set (required for SES)")
        from_email = self._require_from_email()

        timeout = self.config.timeout_seconds
        client = boto3.client(
            "ses",
            region_name=region,
            config=BotoConfig(connect_timeout=timeout, read_timeout=timeout, retries={"max_attempts": 1}),
        )

        try:
            res = client.send_email(
                Source=from_email,
                Destination={"ToAddresses": [to_email]},
                Message={
                    "Subject": {"Data": subject, "Charset": "UTF-8"},
                    "Body": {
                        "Text": {"Data": text_body, "Charset": "UTF-8"},
                        "Html": {"Data": html_body, "Charset": "UTF-8"},
                    },
                },
            )
            return res.get("MessageId")
        except NoCredentialsError as e:
            raise EmailDeliveryError("SES email failed: AWS credentials not available") from e
        except EndpointConnectionError as e:
            raise EmailDeliveryError("SES email failed: could not connect to SES endpoint") from e
        except ClientError as e:
            code = (e.response or {}).get("Error", {}).get("Code", "ClientError")
            if code in {"MessageRejected", "MailFromDomainNotVerifiedException"}:
                raise EmailDeliveryError(
                    "SES rejected the email. Verify FROM_EMAIL (or domain) and check if SES is in sandbox."
                ) from e
            raise EmailDeliveryError(f"SES email failed: {code}") from e
        except BotoCoreError as e:
            raise EmailDeliveryError("SES email failed") from e

    def _send_resend(self, to_email: str, subject: str, html_body: str, text_body: str) -> str | None:
        api_key = (self.config.resend_api_key or "").strip()
        if not api_key:
            raise EmailNotConfiguredError("RESEND_API_KEY is not set")
        from_email = self._require_from_email()

        payload = {
            "from": from_email,
            "to": [to_email],
            "subject": subject,
            "text": text_body,
            "html": html_body,
        }

        # The SDK call takes no timeout argument; bound it with EMAIL_TIMEOUT_SECONDS.
        timeout = self.config.timeout_seconds
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="resend-send")
        try:
            resend.api_key = api_key
            res = pool.submit(resend.Emails.send, payload).result(timeout=timeout)  # type: ignore[attr-defined]
        except FutureTimeoutError as e:
            raise EmailDeliveryError(f"Resend send timed out after {timeout}s") from e
        except Exception as e:  # noqa: BLE001 - the SDK raises runtime-specific errors
            raise EmailDeliveryError(f"Resend send failed: {e}") from e
        finally:
            pool.shutdown(wait=False)

        if isinstance(res, dict):
            if res.get("error"):
                raise EmailDeliveryError(f"Resend API error: {res.get('error')}")
            v = res.get("id")
            if isinstance(v, str) and v.strip():
                return v.strip()
        return None

    def _send_smtp(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        self._require_smtp_config()
        cfg = self.config

        msg = MIMEMultipart("alternative")
        msg["From"] = cfg.smtp_from_email
        msg["To"] = to_email
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=True)
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            if cfg.smtp_use_ssl:
                server: smtplib.SMTP = smtplib.SMTP_SSL(cfg.smtp_host, cfg.smtp_port, timeout=cfg.timeout_seconds)
            else:
                server = smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=cfg.timeout_seconds)
        except OSError as e:
            raise EmailDeliveryError(f"SMTP connection failed: {e}") from e

        try:
            server.ehlo()
            if cfg.smtp_use_tls and not cfg.smtp_use_ssl:
                server.starttls()
                server.ehlo()

            if cfg.smtp_username:
                server.login(cfg.smtp_username, cfg.smtp_password)

            server.sendmail(cfg.smtp_from_email, [to_email], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(f"SMTP send failed: {e}") from e
        finally:
            try:
                server.quit()
            except (smtplib.SMTPException, OSError):
                pass

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------
    def send(self, to: str, subject: str, html_body: str, text_body: str) -> DeliveryResult:
        """
        Sends email using the configured provider.
        - resend (default): Resend API
        - ses: AWS SES via boto3
        - gmail / smtp: SMTP via stdlib
        """
        raw_provider = (self.config.provider or "resend").strip().lower() or "resend"
        if not self.config.enabled:
            logger.info("Email disabled; skipping %r to %s", subject, to)
            return DeliveryResult(status=DeliveryStatus.skipped, provider=raw_provider)

        try:
            provider = _normalize_provider(self.config.provider)
            if provider == "gmail":
                self._send_smtp(to, subject, html_body, text_body)
                msg_id = None
            elif provider == "ses":
                msg_id = self._send_ses(to, subject, html_body, text_body)
            else:
                msg_id = self._send_resend(to, subject, html_body, text_body)
        except (EmailNotConfiguredError, EmailDeliveryError) as exc:
            logger.exception("Email delivery failed: provider=%s to=%s subject=%r", raw_provider, to, subject)
            return DeliveryResult(status=DeliveryStatus.failed, provider=raw_provider, error=str(exc))

        logger.info("Email sent: provider=%s to=%s msg_id=%s", provider, to, msg_id)
        return DeliveryResult(status=DeliveryStatus.sent, provider=provider, message_id=msg_id)


def get_email_sender() -> EmailSender:
    return EmailSender(EmailConfig.from_settings())
