"""Engine components orchestrating fetch → crawl → filter → dispatch → process."""

from .classifier import HEADLINE_CATEGORIES, RemoteClassifier, StaticClassifier
from .crawler import CrawlResult, PublicationCrawler
from .date_filter import CandidateHeadline, DateFilter, FilterReport
from .dispatcher import DispatchResult, QueueDispatcher
from .fanout import FanOutScheduler
from .fetcher import NewsItem, PageFetcher, PageRequest, SearchPage
from .messages import QueueMessage
from .processor import ItemProcessor, Outcome, ProcessingOutcome
from .retry import RetryPolicy

__all__ = [
    "CandidateHeadline",
    "CrawlResult",
    "DateFilter",
    "DispatchResult",
    "FanOutScheduler",
    "FilterReport",
    "HEADLINE_CATEGORIES",
    "ItemProcessor",
    "NewsItem",
    "Outcome",
    "PageFetcher",
    "PageRequest",
    "ProcessingOutcome",
    "PublicationCrawler",
    "QueueDispatcher",
    "QueueMessage",
    "RemoteClassifier",
    "RetryPolicy",
    "SearchPage",
    "StaticClassifier",
]
