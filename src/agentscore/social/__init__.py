"""Social feed access - API client, payload parsing and crawler."""

from agentscore.social.client import PublishResult, SocialClient, SocialClientError, SocialRateLimitError
from agentscore.social.crawler import SocialCrawler

__all__ = [
    "PublishResult",
    "SocialClient",
    "SocialClientError",
    "SocialCrawler",
    "SocialRateLimitError",
]
