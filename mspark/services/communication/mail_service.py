import aiosmtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from pydantic import BaseModel

from mspark.core.config import settings


class MailTemplate(BaseModel):
    subject: str
    html: str


class MailService:
    """SMTP sender for transactional emails"""

    def __init__(
        self,
        hostname: str = None,
        port: int = None,
        username: str = None,
        password: str = None,
        sender: str = None,
        start_tls: bool = None,
    ):
        self.hostname = hostname or settings.smtp_server
        self.port = port or settings.smtp_port
        self.username = username if username is not None else settings.smtp_user
        self.password = password if password is not None else settings.smtp_password
        self.sender = sender or settings.MAIL_FROM
        self.start_tls = settings.smtp_start_tls if start_tls is None else start_tls

    def build_message(self, template: MailTemplate, recipient: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg['From'] = self.sender
        msg['To'] = recipient
        msg['Subject'] = template.subject
        msg.attach(MIMEText(template.html, 'html'))
        return msg

    async def send(self, template: MailTemplate, recipient: str) -> None:
        await aiosmtplib.send(
            self.build_message(template, recipient),
            hostname=self.hostname,
            port=self.port,
            start_tls=self.start_tls,
            username=self.username or None,
            password=self.password or None,
        )
