from frontier.models import BatchSummary, CrawlTask
from frontier.orchestrator import CrawlOrchestrator, crawl_batch, compute_pool_size
