"""Vendor adapters: Gmail (history), Outlook (Graph delta) and IMAP (UID per folder)."""

from mailsync.infrastructure.external.email.providers.gmail_provider import GmailProvider
from mailsync.infrastructure.external.email.providers.imap_provider import IMAPProvider
from mailsync.infrastructure.external.email.providers.outlook_provider import OutlookProvider

__all__ = ["GmailProvider", "IMAPProvider", "OutlookProvider"]
