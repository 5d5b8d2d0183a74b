"""
Volume existence resolution.

Snapshots whose source volume still exists are never deletion candidates,
so every in-scope volume ID is looked up. Lookups run in concurrent batches
and write into one lock-guarded set shared by all page tasks.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable, List

from .constants import VOLUME_LOOKUP_FILTER, VOLUME_LOOKUP_PER_ID
from .utils import ConfigurationError, dedupe, make_batches

logger = logging.getLogger(__name__)


class ExistingVolumes:
    """Thread-safe set of volume IDs known to exist."""

    def __init__(self):
        self._ids = set()
        self._lock = threading.Lock()

    def add_many(self, volume_ids: Iterable[str]) -> None:
        with self._lock:
            self._ids.update(volume_ids)

    def __contains__(self, volume_id: object) -> bool:
        with self._lock:
            return volume_id in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)


# =============================================================================
# Lookup Strategies
# =============================================================================

class VolumeLookup:
    """Answers which IDs in a batch refer to volumes that exist."""

    mode = ""

    def __init__(self, provider):
        self.provider = provider

    def lookup(self, volume_ids: List[str]) -> List[str]:
        raise NotImplementedError


class PerVolumeLookup(VolumeLookup):
    """One DescribeVolumes call per ID; an unknown ID only drops that ID."""

    mode = VOLUME_LOOKUP_PER_ID

    def lookup(self, volume_ids: List[str]) -> List[str]:
        return [v for v in volume_ids if self.provider.volume_exists(v)]


class FilteredVolumeLookup(VolumeLookup):
    """One filtered DescribeVolumes call per batch; unknown IDs are simply absent."""

    mode = VOLUME_LOOKUP_FILTER

    def lookup(self, volume_ids: List[str]) -> List[str]:
        return self.provider.existing_volumes(volume_ids)


_LOOKUPS = {cls.mode: cls for cls in (PerVolumeLookup, FilteredVolumeLookup)}


def make_volume_lookup(provider, mode: str = VOLUME_LOOKUP_FILTER) -> VolumeLookup:
    """Build the lookup strategy named by mode."""
    try:
        return _LOOKUPS[mode](provider)
    except KeyError:
        raise ConfigurationError(
            f"Unknown volume lookup mode {mode!r} (expected one of: {', '.join(sorted(_LOOKUPS))})"
        ) from None


# =============================================================================
# Resolver
# =============================================================================

class VolumeResolver:
    """
    Resolve volume existence in concurrent batches.

    Args:
        lookup: Strategy used for each batch
        existing: Shared set that receives every volume found
        batch_size: Maximum IDs per batch
        max_workers: Maximum batches in flight for one resolve() call
    """

    def __init__(self, lookup: VolumeLookup, existing: ExistingVolumes, batch_size: int, max_workers: int):
        if batch_size < 1:
            raise ConfigurationError(f"volume batch size must be at least 1, got {batch_size}")
        if max_workers < 1:
            raise ConfigurationError(f"volume workers must be at least 1, got {max_workers}")
        self.lookup = lookup
        self.existing = existing
        self.batch_size = batch_size
        self.max_workers = max_workers

    def resolve(self, volume_ids: Iterable[str]) -> int:
        """
        Look up every distinct ID and record the ones that exist.

        Returns once all batches have finished (or the first one failed, in
        which case its ProviderError is raised).

        Returns:
            Number of volumes found across this call's batches
        """
        batches = make_batches(dedupe(volume_ids), self.batch_size)
        if not batches:
            return 0

        found = 0
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(batches))) as executor:
            futures = [executor.submit(self._resolve_batch, batch) for batch in batches]
            try:
                for future in as_completed(futures):
                    found += future.result()
            except Exception:
                for future in futures:
                    future.cancel()
                raise
        return found

    def _resolve_batch(self, batch: List[str]) -> int:
        logger.info(f"Searching for batch of volumes (size={len(batch)}, mode={self.lookup.mode})")
        volumes = self.lookup.lookup(batch)
        self.existing.add_many(volumes)
        return len(volumes)
