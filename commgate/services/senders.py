"""
Channel senders.

A sender is anything with ``send(recipient, subject, body)`` that returns on
success and raises on failure. Raise ``SendError`` for failures whose
message is safe to store and show to the agent; any other exception is
reduced to a category by the delivery executor.

Shipped senders:
  - SmtpEmailSender: email over SMTP (COMMGATE_SMTP_*)
  - CommandSender: hands the message as JSON on stdin to an operator-
    configured command (COMMGATE_SMS_COMMAND / COMMGATE_IMESSAGE_COMMAND),
    e.g. a script wrapping a phone-bridge or Messages automation.
"""

import json
import logging
import shlex
import smtplib
import subprocess
from email.message import EmailMessage
from typing import Dict, Optional, Protocol

from commgate.config import Settings
from commgate.models.queue import Channel

logger = logging.getLogger(__name__)


class SendError(Exception):
    """Sender failure with a message safe to persist."""


class Sender(Protocol):
    def send(self, recipient: str, subject: Optional[str], body: str) -> None:
        ...


class SmtpEmailSender:
    def __init__(
        self,
        host: str,
        port: int = 587,
        from_address: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        starttls: bool = True,
        timeout: float = 60.0,
    ):
        self.host = host
        self.port = port
        self.from_address = from_address or username
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    def send(self, recipient: str, subject: Optional[str], body: str) -> None:
        if not self.from_address:
            raise SendError("email sender has no from address configured")
        message = EmailMessage()
        message["From"] = self.from_address
        message["To"] = recipient
        message["Subject"] = subject or ""
        message.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.starttls:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(message)
        except smtplib.SMTPRecipientsRefused:
            raise SendError("recipient address was refused by the mail server")
        except smtplib.SMTPAuthenticationError:
            raise SendError("mail server rejected the configured credentials")
        except smtplib.SMTPException as exc:
            raise SendError(f"mail server error ({type(exc).__name__})")


class CommandSender:
    """Runs ``command`` with ``{"recipient", "subject", "body"}`` on stdin.

    Exit code 0 is success. On failure the last line of stderr becomes the
    error message (redacted before storage).
    """

    def __init__(self, command: str, timeout: float = 60.0):
        self.argv = shlex.split(command)
        if not self.argv:
            raise ValueError("Sender command must not be empty")
        self.timeout = timeout

    def send(self, recipient: str, subject: Optional[str], body: str) -> None:
        payload = json.dumps({"recipient": recipient, "subject": subject, "body": body})
        try:
            proc = subprocess.run(
                self.argv,
                input=payload,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise SendError(f"sender command timed out after {self.timeout:.0f}s")
        if proc.returncode != 0:
            lines = [line for line in proc.stderr.strip().splitlines() if line.strip()]
            reason = lines[-1] if lines else f"exit status {proc.returncode}"
            raise SendError(f"sender command failed: {reason}")


def build_senders(config: Settings) -> Dict[str, Sender]:
    """Senders for every channel the configuration enables."""
    senders: Dict[str, Sender] = {}
    if config.smtp_host:
        senders[Channel.EMAIL.value] = SmtpEmailSender(
            host=config.smtp_host,
            port=config.smtp_port,
            from_address=config.smtp_from,
            username=config.smtp_username,
            password=config.smtp_password,
            starttls=config.smtp_starttls,
        )
    if config.sms_command:
        senders[Channel.SMS.value] = CommandSender(config.sms_command, timeout=config.command_timeout_s)
    if config.imessage_command:
        senders[Channel.IMESSAGE.value] = CommandSender(config.imessage_command, timeout=config.command_timeout_s)
    logger.info("Configured senders: %s", ", ".join(sorted(senders)) or "none")
    return senders
