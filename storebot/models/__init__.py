from storebot.models.analytics import ConversationMetric, PopularQuestion, ProductMetric
from storebot.models.chat import ChatMessage, ChatSession
from storebot.models.content import ContentRecord
from storebot.models.scraping_job import ScrapingJob
from storebot.models.tenant import BotConfig, Tenant

__all__ = [
    "Tenant", "BotConfig", "ContentRecord", "ScrapingJob",
    "ChatSession", "ChatMessage", "PopularQuestion", "ProductMetric",
    "ConversationMetric",
]
