# backend/notifier.py
# Invitation notifier: tells the invited address about its invitation link.
#
# Delivery is best-effort. The invitation row is committed before we get
# here, so a delivery failure is logged and never undoes the invitation.

import smtplib
from email.message import EmailMessage
from typing import Optional

try:
    from backend.config import (
        EMAIL_FROM,
        EMAIL_FROM_NAME,
        EMAIL_HOST,
        EMAIL_PASSWORD,
        EMAIL_PORT,
        EMAIL_USE_TLS,
        EMAIL_USER,
        INVITATION_TTL_HOURS,
        IS_DEV,
    )
    from backend.models import Invitation
except ModuleNotFoundError:
    from config import (
        EMAIL_FROM,
        EMAIL_FROM_NAME,
        EMAIL_HOST,
        EMAIL_PASSWORD,
        EMAIL_PORT,
        EMAIL_USE_TLS,
        EMAIL_USER,
        INVITATION_TTL_HOURS,
        IS_DEV,
    )
    from models import Invitation


class NotificationError(Exception):
    """Raised when an invitation message could not be delivered."""


def build_invitation_message(
    invitation: Invitation,
    link: str,
    project_name: str,
    inviter_email: Optional[str] = None,
) -> EmailMessage:
    inviter = inviter_email or "A teammate"
    msg = EmailMessage()
    msg["Subject"] = f"You've been invited to {project_name}"
    msg["From"] = f"{EMAIL_FROM_NAME} <{EMAIL_FROM}>"
    msg["To"] = invitation.email
    msg.set_content(
        f"{inviter} invited you to join \"{project_name}\" as {invitation.role.value}.\n\n"
        f"Accept the invitation:\n{link}\n\n"
        f"This link expires in {INVITATION_TTL_HOURS} hours. "
        f"If you weren't expecting this, you can ignore this email.\n"
    )
    return msg


class Notifier:
    """Base notifier. Subclasses deliver a built message."""

    def deliver(self, msg: EmailMessage) -> None:
        raise NotImplementedError

    def send_invitation(
        self,
        invitation: Invitation,
        link: str,
        project_name: str,
        inviter_email: Optional[str] = None,
    ) -> None:
        msg = build_invitation_message(invitation, link, project_name, inviter_email)
        try:
            self.deliver(msg)
        except NotificationError:
            raise
        except Exception as e:
            raise NotificationError(str(e)[:400]) from e
        print(f"[NOTIFY] Invitation {invitation.id} sent via {type(self).__name__}")


class ConsoleNotifier(Notifier):
    """Local development: print the message instead of sending it."""

    def deliver(self, msg: EmailMessage) -> None:
        if IS_DEV:
            print(f"[NOTIFY] To: {msg['To']}\n[NOTIFY] Subject: {msg['Subject']}\n{msg.get_content()}")
        else:
            print(f"[NOTIFY] Console delivery to {msg['To']} (body suppressed outside dev)")


class SmtpNotifier(Notifier):
    def __init__(
        self,
        host: str = EMAIL_HOST,
        port: int = EMAIL_PORT,
        user: str = EMAIL_USER,
        password: str = EMAIL_PASSWORD,
        use_tls: bool = EMAIL_USE_TLS,
        timeout: int = 10,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def deliver(self, msg: EmailMessage) -> None:
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.user:
                    smtp.login(self.user, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP delivery failed: {e}") from e


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    """Process-wide notifier. SMTP when EMAIL_HOST is set, console otherwise."""
    global _notifier
    if _notifier is None:
        _notifier = SmtpNotifier() if EMAIL_HOST else ConsoleNotifier()
    return _notifier


def notify_invitation(
    notifier: Notifier,
    invitation: Invitation,
    link: str,
    project_name: str,
    inviter_email: Optional[str] = None,
) -> bool:
    """Send and report success; failures are logged, never raised."""
    try:
        notifier.send_invitation(invitation, link, project_name, inviter_email)
        return True
    except NotificationError as e:
        print(f"[NOTIFY] ERROR: could not deliver invitation {invitation.id}: {e}")
        return False
