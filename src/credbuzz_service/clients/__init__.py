"""HTTP clients for external collaborators."""

from credbuzz_service.clients.identity_client import IdentityClient
from credbuzz_service.clients.mailer_client import MailerClient

__all__ = ["IdentityClient", "MailerClient"]
