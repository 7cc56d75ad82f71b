from tracker.models import CrawlResult, Failure, RequestRecord, SessionOutcome, Success
from tracker.correlator import EventCorrelator
from tracker.collectors import BaseCollector, RequestCollector, TargetCollector
from tracker.driver import DriverError, NavigationTimeoutError
from tracker.session import CrawlSession, SessionTimeoutError
