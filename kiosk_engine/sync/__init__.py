"""Content sync subsystem — manifest fetch, download, staging, atomic publish."""

from .downloader import Downloader
from .layout import ContentLayout
from .manifest import FileEntry, FileKind, Manifest, fetch_manifest, parse_manifest
from .publisher import AtomicPublisher
from .retry import RetryPolicy
from .runner import ContentSync, SyncReport, run_sync
from .staging import StagingValidator
