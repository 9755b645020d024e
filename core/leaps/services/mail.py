"""
Outbound e-mail.

Messages are sent as ``multipart/alternative`` with a plain-text and an HTML
part, over SMTP (optionally SMTP over SSL) as configured by the ``SMTP_*``
parameters.
"""

import smtplib
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Optional

from .. import logging
from ..globals import get_application_config

logger = logging.getLogger(__name__)


def _connect(config) -> smtplib.SMTP:
    host = config.get('SMTP_HOST', 'localhost')
    port = int(config.get('SMTP_PORT', 0) or 0)
    if bool(int(config.get('SMTP_SSL', 0))):
        server: smtplib.SMTP = smtplib.SMTP_SSL(host, port or 465)
    else:
        server = smtplib.SMTP(host, port or 25)
    username = config.get('SMTP_USERNAME')
    if username:
        server.login(username, config.get('SMTP_PASSWORD', ''))
    return server


def send(recipient: str, subject: str, text_body: str,
         html_body: Optional[str] = None,
         sender: Optional[str] = None) -> None:
    """
    Send an e-mail.

    Parameters
    ----------
    recipient : str
        Destination address.
    subject : str
    text_body : str
        Plain-text version of the message.
    html_body : str
        HTML version of the message; optional.
    sender : str
        ``From`` address; defaults to ``EMAIL_SENDER``.

    """
    config = get_application_config()
    message = EmailMessage()
    message['Subject'] = subject
    message['From'] = sender or config.get('EMAIL_SENDER',
                                           'noreply@leaps.example.org')
    message['To'] = recipient
    message['Date'] = formatdate(localtime=False)
    message['Message-ID'] = make_msgid()
    message.set_content(text_body)
    if html_body:
        message.add_alternative(html_body, subtype='html')

    server = _connect(config)
    try:
        server.send_message(message)
    finally:
        server.quit()
    logger.debug('Sent "%s" to %s', subject, recipient)
